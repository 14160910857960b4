import datetime
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from ledger_core.exceptions import AlreadyReversed, TransactionNotFound
from ledger_core.models import AuditLog, JournalEntry
from ledger_core.services import (SourceRef, get_trial_balance,
                                  post_transaction, reverse_transaction)
from ledger_core.services.posting import credit, debit

from .helpers import account, make_company


class ReverseTransactionTests(TestCase):

    def setUp(self):
        self.company = make_company()
        self.cash = account(self.company, "1000")
        self.revenue = account(self.company, "4000")
        self.original = post_transaction(
            self.company.pk,
            datetime.date(2024, 5, 1),
            "Sale",
            SourceRef("invoice", 3),
            [debit(self.cash, "75.00", "cash in"), credit(self.revenue, "75.00", "sale")],
        )

    def test_reversal_swaps_sides_and_links_original(self):
        reversal = reverse_transaction(self.company.pk, self.original.pk, on_date="2024-05-20")

        self.assertEqual(reversal.reverses_id, self.original.pk)
        self.assertEqual(reversal.date, datetime.date(2024, 5, 20))
        self.assertEqual(reversal.source_type, "reversal")
        self.original.refresh_from_db()
        self.assertTrue(self.original.is_reversed)

        sides = {
            line.account.code: (line.debit_amount, line.credit_amount)
            for line in reversal.lines.select_related("account")
        }
        self.assertEqual(sides["1000"], (Decimal("0.00"), Decimal("75.00")))
        self.assertEqual(sides["4000"], (Decimal("75.00"), Decimal("0.00")))

    def test_reversal_nets_every_account_to_zero(self):
        reverse_transaction(self.company.pk, self.original.pk)

        tb = get_trial_balance(self.company.pk)
        self.assertTrue(tb.is_balanced)
        for row in tb.rows:
            self.assertEqual(row.balance, Decimal("0.00"), row.code)

    def test_reversal_defaults_to_today(self):
        reversal = reverse_transaction(self.company.pk, self.original.pk)
        self.assertEqual(reversal.date, timezone.localdate())

    def test_reversing_twice_raises_already_reversed(self):
        reverse_transaction(self.company.pk, self.original.pk)
        with self.assertRaises(AlreadyReversed):
            reverse_transaction(self.company.pk, self.original.pk)
        self.assertEqual(JournalEntry.objects.count(), 2)

    def test_unknown_transaction_raises_not_found(self):
        with self.assertRaises(TransactionNotFound):
            reverse_transaction(self.company.pk, 999999)

    def test_other_company_transaction_is_not_found(self):
        other = make_company("Other Co")
        with self.assertRaises(TransactionNotFound):
            reverse_transaction(other.pk, self.original.pk)

    def test_source_can_be_posted_again_after_reversal(self):
        reverse_transaction(self.company.pk, self.original.pk)
        repost = post_transaction(
            self.company.pk, "2024-05-02", "Sale (corrected)", SourceRef("invoice", 3),
            [debit(self.cash, "80.00"), credit(self.revenue, "80.00")],
        )
        self.assertNotEqual(repost.pk, self.original.pk)

    def test_reversal_is_audited(self):
        reversal = reverse_transaction(self.company.pk, self.original.pk, actor="tester")
        log = AuditLog.objects.get(action="reverse", object_id=str(self.original.pk))
        self.assertEqual(log.changes["reversal_id"], reversal.pk)

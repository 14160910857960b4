import datetime
from decimal import Decimal

import pytest
from django.test import TestCase

from ledger_core.exceptions import CustomerNotFound
from ledger_core.models import BankTransaction
from ledger_core.services import (apply_bank_row_to_invoice, cancel_invoice,
                                  get_balance_sheet, get_customer_statement,
                                  get_expense_category_report,
                                  get_general_ledger, get_profit_and_loss,
                                  get_trial_balance, post_opening_balance,
                                  post_transaction, reverse_transaction)
from ledger_core.services.posting import credit, debit

from .helpers import (account, make_bank_account, make_company,
                      make_customer, make_invoice)

D = datetime.date


class StatementTests(TestCase):

    def setUp(self):
        self.company = make_company()
        c = self.company
        self.bank = account(c, "1100")
        post_opening_balance(c, self.bank.pk, D(2024, 1, 1), Decimal("1000.00"))

        def post(day, description, lines):
            return post_transaction(c.pk, day, description, None, lines)

        # Sale with tax, cost of sales, rent, utilities
        post(D(2024, 1, 10), "Sale", [
            debit(account(c, "1200"), "540.00"),
            credit(account(c, "4000"), "500.00"),
            credit(account(c, "2200"), "40.00"),
        ])
        post(D(2024, 1, 10), "Goods sold", [
            debit(account(c, "5000"), "200.00"),
            credit(account(c, "1500"), "200.00"),
        ])
        post(D(2024, 1, 31), "January rent", [
            debit(account(c, "6100"), "300.00"),
            credit(self.bank, "300.00"),
        ])
        post(D(2024, 2, 5), "Power bill", [
            debit(account(c, "6200"), "45.50"),
            credit(self.bank, "45.50"),
        ])

    def test_trial_balance_balances_for_every_as_of_date(self):
        for as_of in (D(2023, 12, 31), D(2024, 1, 1), D(2024, 1, 10), D(2024, 1, 31), D(2024, 2, 5), None):
            with self.subTest(as_of=as_of):
                tb = get_trial_balance(self.company.pk, as_of)
                self.assertTrue(tb.is_balanced)
                self.assertEqual(tb.total_debit, tb.total_credit)

    def test_trial_balance_as_of_is_inclusive(self):
        tb = get_trial_balance(self.company.pk, D(2024, 1, 31))
        rent = next(r for r in tb.rows if r.code == "6100")
        self.assertEqual(rent.balance, Decimal("300.00"))
        self.assertFalse(any(r.code == "6200" and r.balance for r in tb.rows))

        tb = get_trial_balance(self.company.pk, D(2024, 1, 30))
        rent = next(r for r in tb.rows if r.code == "6100")
        self.assertEqual(rent.balance, Decimal("0.00"))

    def test_trial_balance_balances_are_on_normal_side(self):
        tb = get_trial_balance(self.company.pk)
        rows = {r.code: r for r in tb.rows}
        self.assertEqual(rows["1100"].balance, Decimal("654.50"))
        self.assertEqual(rows["4000"].balance, Decimal("500.00"))
        self.assertEqual(rows["1500"].balance, Decimal("-200.00"))

    def test_balance_sheet_balances_for_every_as_of_date(self):
        for as_of in (D(2024, 1, 1), D(2024, 1, 10), D(2024, 1, 31), D(2024, 2, 5), D(2025, 1, 1)):
            with self.subTest(as_of=as_of):
                bs = get_balance_sheet(self.company.pk, as_of)
                self.assertTrue(bs.is_balanced)
                self.assertLessEqual(
                    abs(bs.total_assets - bs.total_liabilities_and_equity), Decimal("0.01")
                )

    def test_balance_sheet_shows_retained_earnings(self):
        bs = get_balance_sheet(self.company.pk, D(2024, 2, 5))
        equity = {line.name: line.amount for line in bs.equity}
        # 500 revenue - 200 COGS - 300 rent - 45.50 utilities
        self.assertEqual(equity["Retained Earnings"], Decimal("-45.50"))
        self.assertEqual(equity["3900 Opening Balance Equity"], Decimal("1000.00"))

    def test_profit_and_loss_sections(self):
        pl = get_profit_and_loss(self.company.pk, D(2024, 1, 1), D(2024, 3, 1))
        self.assertEqual(pl.total_revenue, Decimal("500.00"))
        self.assertEqual(pl.total_cost, Decimal("200.00"))
        self.assertEqual(pl.gross_profit, Decimal("300.00"))
        self.assertEqual(pl.total_expenses, Decimal("345.50"))
        self.assertEqual(pl.net_income, Decimal("-45.50"))
        self.assertIn("Rent", [line.name for line in pl.expenses])

    def test_profit_and_loss_range_is_half_open(self):
        pl = get_profit_and_loss(self.company.pk, D(2024, 1, 1), D(2024, 1, 31))
        self.assertEqual(pl.total_expenses, Decimal("0.00"))
        pl = get_profit_and_loss(self.company.pk, D(2024, 1, 31), D(2024, 2, 1))
        self.assertEqual(pl.total_expenses, Decimal("300.00"))

    def test_general_ledger_order_and_range(self):
        rows = get_general_ledger(self.company.pk, D(2024, 1, 10), D(2024, 2, 5))
        self.assertEqual([r.date for r in rows], sorted(r.date for r in rows))
        self.assertEqual(len(rows), 7)
        self.assertNotIn(D(2024, 2, 5), [r.date for r in rows])
        self.assertEqual(sum(r.debit for r in rows), sum(r.credit for r in rows))

    def test_reversed_entries_drop_out_of_statements(self):
        je = post_transaction(self.company.pk, D(2024, 2, 10), "Mistake", None, [
            debit(account(self.company, "6300"), "99.00"),
            credit(self.bank, "99.00"),
        ])
        reverse_transaction(self.company.pk, je.pk, on_date=D(2024, 2, 10))
        pl = get_profit_and_loss(self.company.pk, D(2024, 2, 1), D(2024, 3, 1))
        self.assertNotIn("Travel", [line.name for line in pl.expenses])

    def test_expense_category_report(self):
        rows = get_expense_category_report(self.company.pk, D(2024, 1, 1), D(2024, 3, 1))
        totals = {r.category: r.total for r in rows}
        self.assertEqual(totals["Rent"], Decimal("300.00"))
        self.assertEqual(totals["Utilities"], Decimal("45.50"))
        self.assertEqual(rows[0].category, "Rent")

    def test_statements_are_scoped_to_company(self):
        other = make_company("Other Co")
        tb = get_trial_balance(other.pk)
        self.assertEqual(tb.total_debit, Decimal("0.00"))
        self.assertEqual(get_general_ledger(other.pk), [])


@pytest.mark.django_db
def test_empty_ledger_statements_balance():
    company = make_company("Empty Co")
    assert get_trial_balance(company.pk).is_balanced
    bs = get_balance_sheet(company.pk)
    assert bs.is_balanced
    assert bs.total_assets == Decimal("0.00")


class CustomerStatementTests(TestCase):

    def setUp(self):
        self.company = make_company()
        self.customer = make_customer(self.company, "Acme")
        self.inv1 = make_invoice(self.company, self.customer, "INV-1", "100.00",
                                 issue_date=D(2024, 1, 10))
        self.inv2 = make_invoice(self.company, self.customer, "INV-2", "50.00",
                                 issue_date=D(2024, 2, 5), tax="5.00")
        cancel_invoice(make_invoice(self.company, self.customer, "INV-3", "70.00",
                                    issue_date=D(2024, 2, 10)))
        row = BankTransaction.objects.create(
            company=self.company,
            bank_account=make_bank_account(self.company),
            transaction_date=D(2024, 1, 20),
            description="Acme deposit",
            amount=Decimal("60.00"),
        )
        apply_bank_row_to_invoice(self.company.pk, row.pk, self.inv1.pk, "60.00")

    def test_full_history(self):
        statement = get_customer_statement(self.company.pk, self.customer.pk)
        self.assertEqual(statement.opening_balance, Decimal("0.00"))
        self.assertEqual(
            [(line.kind, line.reference, line.debit, line.credit, line.balance)
             for line in statement.lines],
            [
                ("invoice", "INV-1", Decimal("100.00"), Decimal("0.00"), Decimal("100.00")),
                ("payment", "INV-1", Decimal("0.00"), Decimal("60.00"), Decimal("40.00")),
                ("invoice", "INV-2", Decimal("55.00"), Decimal("0.00"), Decimal("95.00")),
            ],
        )
        self.assertEqual(statement.total_debits, Decimal("155.00"))
        self.assertEqual(statement.total_credits, Decimal("60.00"))
        self.assertEqual(statement.closing_balance, Decimal("95.00"))

    def test_range_carries_earlier_activity_as_opening_balance(self):
        statement = get_customer_statement(
            self.company.pk, self.customer.pk, start=D(2024, 2, 1), end=D(2024, 3, 1)
        )
        self.assertEqual(statement.opening_balance, Decimal("40.00"))
        self.assertEqual([line.reference for line in statement.lines], ["INV-2"])
        self.assertEqual(statement.closing_balance, Decimal("95.00"))

    def test_end_is_exclusive(self):
        statement = get_customer_statement(self.company.pk, self.customer.pk, end=D(2024, 1, 20))
        self.assertEqual([line.kind for line in statement.lines], ["invoice"])
        self.assertEqual(statement.closing_balance, Decimal("100.00"))

    def test_unknown_or_foreign_customer(self):
        other = make_company("Other Co")
        with self.assertRaises(CustomerNotFound):
            get_customer_statement(self.company.pk, 987654)
        with self.assertRaises(CustomerNotFound):
            get_customer_statement(other.pk, self.customer.pk)

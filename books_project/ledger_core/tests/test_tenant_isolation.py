import datetime
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.test import TestCase

from ledger_core.exceptions import NotFoundError, UnknownAccount
from ledger_core.models import Account, Customer, Invoice
from ledger_core.services import (get_customers_with_balance,
                                  initialize_chart_of_accounts,
                                  post_transaction)
from ledger_core.services.posting import credit, debit

from .helpers import account, make_company, make_customer, make_invoice


class TenantIsolationManagerTests(TestCase):
    def setUp(self):
        self.company_a = make_company("Company A")
        self.company_b = make_company("Company B")

        # create one invoice per company
        self.inv_a = make_invoice(
            self.company_a, make_customer(self.company_a, "Acme"), "A-1", "200.00"
        )
        self.inv_b = make_invoice(
            self.company_b, make_customer(self.company_b, "Acme"), "B-1", "100.00"
        )

    def test_for_company_returns_only_that_company_objects(self):
        """Compare invoice primary keys"""
        self.assertListEqual(
            list(
                Invoice.objects.for_company(self.company_a)
                .order_by("id")
                .values_list("pk", flat=True)
            ),
            [self.inv_a.pk],
        )
        # for_company also accepts a bare id
        self.assertListEqual(
            list(
                Invoice.objects.for_company(self.company_b.pk)
                .order_by("id")
                .values_list("pk", flat=True)
            ),
            [self.inv_b.pk],
        )

    def test_get_other_company_object_raises_does_not_exist(self):
        # `for_company` shouldn't return the other company's record
        with self.assertRaises(Invoice.DoesNotExist):
            Invoice.objects.for_company(self.company_a).get(pk=self.inv_b.pk)

    def test_posting_cannot_touch_other_company_accounts(self):
        with self.assertRaises(UnknownAccount):
            post_transaction(
                self.company_a.pk, "2024-01-01", "Cross-tenant", None,
                [debit(account(self.company_a, "1000"), "5.00"),
                 credit(account(self.company_b, "4000"), "5.00")],
            )

    def test_invoice_cannot_use_other_company_customer(self):
        foreign = Customer.objects.for_company(self.company_b).get()
        with self.assertRaises(ValidationError):
            Invoice.objects.create(
                company=self.company_a,
                customer=foreign,
                invoice_number="A-2",
                issue_date=datetime.date(2024, 1, 1),
                amount=Decimal("1.00"),
                revenue_account=account(self.company_a, "4000"),
            )

    def test_balances_are_per_company(self):
        today = datetime.date(2024, 12, 31)
        balances = get_customers_with_balance(self.company_a.pk, today)
        self.assertEqual([cb.balance for cb in balances], [Decimal("200.00")])

    def test_unknown_company_has_no_control_accounts(self):
        with self.assertRaises(NotFoundError):
            post_transaction(
                999999, "2024-01-01", "No such company", None,
                [debit(account(self.company_a, "1000"), "5.00"),
                 credit(account(self.company_a, "4000"), "5.00")],
            )


@pytest.mark.django_db
def test_chart_initialization_is_idempotent_and_per_company():
    company = make_company("Chart Co")
    count = Account.objects.for_company(company).count()
    assert initialize_chart_of_accounts(company) == []
    assert Account.objects.for_company(company).count() == count

    other = make_company("Other Chart Co")
    assert Account.objects.for_company(other).count() == count
    ar = account(company, "1200")
    assert ar.is_control_account
    assert ar.normal_balance == "debit"

"""Shared setup for the ledger test suite."""
import datetime
from decimal import Decimal

from django.utils.text import slugify

from ledger_core.models import Account, BankAccount, Company, Customer, Invoice
from ledger_core.services import initialize_chart_of_accounts, issue_invoice


def make_company(name="Test Co"):
    company = Company.objects.create(name=name, slug=slugify(name))
    initialize_chart_of_accounts(company)
    return company


def account(company, code):
    return Account.objects.for_company(company).get(code=code)


def make_bank_account(company, opening_balance="0.00", name="Operating"):
    return BankAccount.objects.create(
        company=company,
        name=name,
        ledger_account=account(company, "1100"),
        opening_balance=Decimal(opening_balance),
    )


def make_customer(company, name, email="", **kwargs):
    return Customer.objects.create(company=company, name=name, email=email, **kwargs)


def make_invoice(company, customer, number, amount, issue_date=None,
                 due_date=None, tax="0.00", issue=True):
    inv = Invoice.objects.create(
        company=company,
        customer=customer,
        invoice_number=number,
        issue_date=issue_date or datetime.date(2024, 1, 1),
        due_date=due_date,
        amount=Decimal(amount),
        tax_amount=Decimal(tax),
        revenue_account=account(company, "4000"),
    )
    if issue:
        issue_invoice(inv)
    return inv

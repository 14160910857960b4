import datetime
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone
from django.utils.text import slugify

from ledger_core.models import Account, BankAccount, Company, Customer, Invoice, Vendor
from ledger_core.services import (import_bank_feed, initialize_chart_of_accounts,
                                  issue_invoice, post_opening_balance)

DEMO_FEED = """Date,Description,Amount,Reference
{d1},Office Depot supplies,-84.20,CHK1001
{d2},Deposit - Acme Corp,1500.00,DEP2001
{d3},Monthly rent,-1200.00,CHK1002
{d4},City electric utilities,-143.75,ACH3001
"""


class Command(BaseCommand):
    help = "Seeds the database with a demo company, chart, invoices and a bank feed."

    # Define command-line argument
    def add_arguments(self, parser):
        parser.add_argument(
            "--company",  # Define flag
            type=str,
            default="Demo Ltd",
            help="Name of the demo company (default: Demo Ltd)",
        )

    # Generate unique slug for company
    def unique_slug_for_company(self, name, max_tries=100):
        # "Test Ltd" → "test-ltd", then "test-ltd-1", "test-ltd-2"...
        base = slugify(name) or "company"
        slug = base
        i = 1
        while Company.objects.filter(slug=slug).exists():
            slug = f"{base}-{i}"
            i += 1
            if i > max_tries:
                raise RuntimeError("Couldn't generate unique slug")
        return slug

    @transaction.atomic
    def handle(self, *args, **options):
        com_name = options["company"]  # Read argument from add_arguments()
        self.stdout.write(self.style.NOTICE(f"Seeding demo data for {com_name}..."))

        # 1. Company + default chart of accounts
        company, created = Company.objects.get_or_create(
            name=com_name,
            defaults={"slug": self.unique_slug_for_company(com_name)},
        )
        if not created:
            self.stdout.write(self.style.WARNING(f"{company} already exists, nothing to do."))
            return
        initialize_chart_of_accounts(company)

        def acct(code):
            return Account.objects.for_company(company).get(code=code)

        today = timezone.localdate()

        # 2. Opening balances (against Opening Balance Equity)
        opening_date = today.replace(month=1, day=1)
        post_opening_balance(company, acct("1100").pk, opening_date, Decimal("5000.00"), actor="seed_demo")
        post_opening_balance(company, acct("1700").pk, opening_date, Decimal("2500.00"), actor="seed_demo")

        # 3. Counterparties
        acme = Customer.objects.create(
            company=company, name="Acme Corp", email="billing@acme.example", payment_terms="Net 15"
        )
        globex = Customer.objects.create(
            company=company, name="Globex", email="ap@globex.example", payment_terms="Net 30"
        )
        Vendor.objects.create(
            company=company, name="Office Depot", default_expense_account=acct("6000")
        )

        # 4. Invoices, one of them already past due
        for number, customer, issued, amount in (
            ("INV-0001", acme, today - datetime.timedelta(days=40), Decimal("1500.00")),
            ("INV-0002", globex, today - datetime.timedelta(days=10), Decimal("820.00")),
        ):
            inv = Invoice.objects.create(
                company=company,
                customer=customer,
                invoice_number=number,
                issue_date=issued,
                amount=amount,
                tax_amount=(amount * Decimal("0.08")).quantize(Decimal("0.01")),
                revenue_account=acct("4100"),
            )
            issue_invoice(inv, actor="seed_demo")

        # 5. Bank account + a small feed
        bank = BankAccount.objects.create(
            company=company,
            name="Operating Account",
            account_number_masked="****4321",
            ledger_account=acct("1100"),
            opening_balance=Decimal("5000.00"),
        )
        feed = DEMO_FEED.format(
            d1=(today - datetime.timedelta(days=9)).isoformat(),
            d2=(today - datetime.timedelta(days=7)).isoformat(),
            d3=(today - datetime.timedelta(days=5)).isoformat(),
            d4=(today - datetime.timedelta(days=2)).isoformat(),
        )
        result = import_bank_feed(company, bank.pk, feed, file_name="demo.csv", actor="seed_demo")

        self.stdout.write(self.style.SUCCESS(f"Created company: {company} (id={company.pk})"))
        self.stdout.write(f"Imported {result.parsed_count} bank rows, skipped {result.skipped_count}")
        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully!"))

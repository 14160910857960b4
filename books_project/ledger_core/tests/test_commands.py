import datetime
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from ledger_core.models import BankTransaction, Company
from ledger_core.services import post_opening_balance

from .helpers import (account, make_bank_account, make_company,
                      make_customer, make_invoice)

FEED = "Date,Description,Amount\n2024-01-05,Coffee,-4.50\n2024-01-06,Refund,10.00\n"


@pytest.mark.django_db
def test_verify_ledger_reports_balanced_books():
    company = make_company()
    post_opening_balance(company, account(company, "1100").pk,
                         datetime.date(2024, 1, 1), "500.00")
    out = StringIO()
    call_command("verify_ledger", company=company.pk, stdout=out)
    assert out.getvalue().startswith("Test Co: TB debit=500.00 credit=500.00 [ok]")
    assert "UNBALANCED" not in out.getvalue()


@pytest.mark.django_db
def test_import_bank_feed_command(tmp_path):
    company = make_company()
    bank = make_bank_account(company)
    path = tmp_path / "jan.csv"
    path.write_bytes(("\ufeff" + FEED + "2024-01-07,Bogus,1e20\n").encode("utf-8"))

    out = StringIO()
    call_command("import_bank_feed", str(path), company=company.pk,
                 bank_account=bank.pk, stdout=out)

    assert "Imported 2 rows, skipped 1" in out.getvalue()
    assert "Row 4:" in out.getvalue()
    assert BankTransaction.objects.filter(bank_account=bank).count() == 2


@pytest.mark.django_db
@pytest.mark.parametrize(
    "content",
    [b"date,memo\n2024-01-05,Coffee\n", b"date,description,amount\n\xff,x,1\n"],
)
def test_import_bank_feed_command_rejects_bad_files(tmp_path, content):
    company = make_company()
    bank = make_bank_account(company)
    path = tmp_path / "bad.csv"
    path.write_bytes(content)
    with pytest.raises(CommandError):
        call_command("import_bank_feed", str(path), company=company.pk,
                     bank_account=bank.pk, stdout=StringIO())
    assert not BankTransaction.objects.exists()


@pytest.mark.django_db
def test_send_payment_reminders_command(mailoutbox):
    company = make_company()
    customer = make_customer(company, "Acme", email="ap@acme.example")
    make_invoice(company, customer, "INV-1", "100.00")

    out = StringIO()
    call_command("send_payment_reminders", company=company.pk, stdout=out)

    assert f"customer={customer.pk} sent" in out.getvalue()
    assert [m.to for m in mailoutbox] == [["ap@acme.example"]]


@pytest.mark.django_db
def test_seed_demo_then_verify():
    call_command("seed_demo", stdout=StringIO())
    company = Company.objects.get(name="Demo Ltd")
    assert BankTransaction.objects.filter(company=company).count() == 4

    out = StringIO()
    call_command("verify_ledger", company=company.pk, stdout=out)
    assert "UNBALANCED" not in out.getvalue()

    # Second run leaves the existing company alone
    call_command("seed_demo", stdout=StringIO())
    assert Company.objects.filter(name="Demo Ltd").count() == 1

import datetime
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.test import TestCase

from ledger_core.exceptions import FeedFormatError, NotFoundError
from ledger_core.models import (AuditLog, BankFeedImport, BankTransaction,
                                JournalEntry, Vendor)
from ledger_core.services import (categorize_bank_row, import_bank_feed,
                                  parse_feed, post_bank_row,
                                  validate_headers)
from ledger_core.services.bank_feed import parse_amount, parse_feed_date

from .helpers import account, make_bank_account, make_company, make_customer

SAMPLE = "date,description,amount\n2024-01-05,Coffee,-4.50\n2024-01-06,Refund,10.00"


""" Parsing """
def test_sample_feed_parses_to_debit_and_credit():
    feed = parse_feed(SAMPLE)
    assert feed.skipped == 0
    coffee, refund = feed.rows
    assert coffee.transaction_date == datetime.date(2024, 1, 5)
    assert coffee.debit == Decimal("4.50")
    assert coffee.credit == Decimal("0.00")
    assert refund.credit == Decimal("10.00")
    assert refund.debit == Decimal("0.00")


@pytest.mark.parametrize(
    "header",
    [
        "date,description",
        "Description,DATE",
        "DESCRIPTION,Memo,Date",
        "amt,date,description",
    ],
)
def test_missing_amount_header_fails_validation(header):
    assert validate_headers(header + "\n2024-01-05,Coffee") is False


@pytest.mark.parametrize(
    "header",
    [
        "date,description,amount",
        "AMOUNT,Description,Date",
        "Transaction Date,Particulars,Amount",
        "Value-Date,Details,Amount,Balance",
    ],
)
def test_headers_match_in_any_order_and_case(header):
    assert validate_headers(header) is True


def test_empty_feed_fails_validation():
    assert validate_headers("") is False
    assert validate_headers("\n\n") is False


def test_bad_rows_are_dropped_and_counted():
    raw = "\n".join([
        "Date,Description,Amount",
        "2024-01-05,Coffee,-4.50",
        "",
        "not-a-date,Broken date,1.00",
        "2024-01-07,Broken amount,abc",
        "2024-01-08,,3.00",
        "2024-01-09,Zero,0.00",
        "2024-01-10,Tea,-2.00",
    ])
    feed = parse_feed(raw)
    assert [r.description for r in feed.rows] == ["Coffee", "Tea"]
    # blank line is not counted
    assert feed.skipped == 4
    assert len(feed.errors) == 4
    assert feed.errors[0].startswith("Row 4:")


def test_parse_feed_rejects_missing_headers():
    with pytest.raises(FeedFormatError):
        parse_feed("date,description\n2024-01-05,Coffee")


def test_bom_and_bytes_input():
    feed = parse_feed(("\ufeff" + SAMPLE).encode("utf-8"))
    assert len(feed.rows) == 2


def test_undecodable_bytes_are_a_format_error():
    raw = b"date,description,amount\n\xff\xfe,x,1"
    with pytest.raises(FeedFormatError):
        validate_headers(raw)
    with pytest.raises(FeedFormatError):
        parse_feed(raw)


def test_out_of_range_amounts_drop_only_their_row():
    feed = parse_feed(SAMPLE + "\n2024-01-07,Bogus,1e30\n2024-01-08,Huge,100000000000000000000")
    assert [r.description for r in feed.rows] == ["Coffee", "Refund"]
    assert feed.skipped == 2
    assert feed.errors[0].startswith("Row 4:")


@pytest.mark.parametrize(
    "raw, amount",
    [
        ("-4.50", Decimal("-4.50")),
        ("$1,234.50", Decimal("1234.50")),
        ("(12.00)", Decimal("-12.00")),
        (" 7 ", Decimal("7.00")),
    ],
)
def test_parse_amount(raw, amount):
    assert parse_amount(raw) == amount


@pytest.mark.parametrize("raw", ["", "abc", "1.005", "--1", "1e30", "NaN", "100000000000000000.00"])
def test_parse_amount_rejects(raw):
    with pytest.raises(ValueError):
        parse_amount(raw)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2024-01-05", datetime.date(2024, 1, 5)),
        ("01/15/2024", datetime.date(2024, 1, 15)),
        ("15/01/2024", datetime.date(2024, 1, 15)),
        ("05 Jan 2024", datetime.date(2024, 1, 5)),
    ],
)
def test_parse_feed_date(raw, expected):
    assert parse_feed_date(raw) == expected


def test_parse_feed_date_rejects_impossible_dates():
    with pytest.raises(ValueError):
        parse_feed_date("2024-02-30")


""" Import """
class ImportBankFeedTests(TestCase):

    def setUp(self):
        self.company = make_company()
        self.bank = make_bank_account(self.company)

    def test_sample_import_running_balance(self):
        result = import_bank_feed(self.company.pk, self.bank.pk, SAMPLE, file_name="jan.csv")

        self.assertEqual(result.parsed_count, 2)
        self.assertEqual(result.skipped_count, 0)
        self.assertEqual([r.amount for r in result.rows], [Decimal("-4.50"), Decimal("10.00")])
        self.assertEqual(
            [r.running_balance for r in result.rows], [Decimal("-4.50"), Decimal("5.50")]
        )
        self.assertEqual(self.bank.current_balance, Decimal("5.50"))

        self.assertEqual(result.feed_import.status, "processed")
        self.assertEqual(result.feed_import.parsed_rows, 2)
        self.assertTrue(AuditLog.objects.filter(action="import").exists())

    def test_running_balance_starts_from_opening_balance(self):
        bank = make_bank_account(self.company, opening_balance="100.00", name="Savings")
        result = import_bank_feed(self.company.pk, bank.pk, SAMPLE)
        self.assertEqual(result.rows[-1].running_balance, Decimal("105.50"))

    def test_earlier_rows_imported_later_recompute_balances(self):
        import_bank_feed(self.company.pk, self.bank.pk, SAMPLE)
        import_bank_feed(self.company.pk, self.bank.pk, "date,description,amount\n2024-01-01,Deposit,20.00")

        rows = list(BankTransaction.objects.filter(bank_account=self.bank))
        self.assertEqual([r.description for r in rows], ["Deposit", "Coffee", "Refund"])
        self.assertEqual(
            [r.running_balance for r in rows],
            [Decimal("20.00"), Decimal("15.50"), Decimal("25.50")],
        )

    def test_missing_headers_write_nothing(self):
        with self.assertRaises(FeedFormatError):
            import_bank_feed(self.company.pk, self.bank.pk, "date,memo\n2024-01-05,Coffee")
        self.assertFalse(BankFeedImport.objects.exists())
        self.assertFalse(BankTransaction.objects.exists())

    def test_undecodable_feed_writes_nothing(self):
        with self.assertRaises(FeedFormatError):
            import_bank_feed(self.company.pk, self.bank.pk, b"date,description,amount\n\xff,x,1")
        self.assertFalse(BankFeedImport.objects.exists())

    def test_oversized_row_is_skipped_not_fatal(self):
        result = import_bank_feed(self.company.pk, self.bank.pk, SAMPLE + "\n2024-01-07,Bogus,1e20")
        self.assertEqual(result.parsed_count, 2)
        self.assertEqual(result.skipped_count, 1)
        self.assertEqual(BankTransaction.objects.filter(bank_account=self.bank).count(), 2)

    def test_skipped_rows_are_reported(self):
        raw = SAMPLE + "\nbad-date,Oops,1.00"
        result = import_bank_feed(self.company.pk, self.bank.pk, raw)
        self.assertEqual(result.parsed_count, 2)
        self.assertEqual(result.skipped_count, 1)
        self.assertEqual(result.feed_import.errors, result.errors)

    def test_other_company_bank_account_is_not_found(self):
        other = make_company("Other Co")
        with self.assertRaises(NotFoundError):
            import_bank_feed(other.pk, self.bank.pk, SAMPLE)

    def test_suggestions_from_names_and_keywords(self):
        acme = make_customer(self.company, "Acme Corp")
        Vendor.objects.create(
            company=self.company, name="Staples", default_expense_account=account(self.company, "6000")
        )
        raw = "\n".join([
            "date,description,amount",
            "2024-02-01,Monthly rent payment,-1200.00",
            "2024-02-02,Deposit ACME CORP,500.00",
            "2024-02-03,Staples store 42,-18.20",
        ])
        rent, deposit, staples = import_bank_feed(self.company.pk, self.bank.pk, raw).rows

        self.assertEqual(rent.suggested_account.code, "6100")
        self.assertEqual(deposit.suggested_customer, acme)
        self.assertEqual(staples.suggested_vendor.name, "Staples")
        self.assertEqual(staples.suggested_account.code, "6000")


""" Categorize & post """
class PostBankRowTests(TestCase):

    def setUp(self):
        self.company = make_company()
        self.bank = make_bank_account(self.company)
        self.coffee, self.refund = import_bank_feed(self.company.pk, self.bank.pk, SAMPLE).rows

    def test_outflow_posts_expense_against_bank(self):
        categorize_bank_row(self.company.pk, self.coffee.pk, account_id=account(self.company, "6400").pk)
        je = post_bank_row(self.company.pk, self.coffee.pk)

        lines = {l.account.code: (l.debit_amount, l.credit_amount) for l in je.lines.select_related("account")}
        self.assertEqual(lines["6400"], (Decimal("4.50"), Decimal("0.00")))
        self.assertEqual(lines["1100"], (Decimal("0.00"), Decimal("4.50")))
        self.coffee.refresh_from_db()
        self.assertEqual(self.coffee.status, "posted")

    def test_inflow_posts_bank_against_category(self):
        categorize_bank_row(self.company.pk, self.refund.pk, account_id=account(self.company, "4100").pk)
        je = post_bank_row(self.company.pk, self.refund.pk)
        lines = {l.account.code: (l.debit_amount, l.credit_amount) for l in je.lines.select_related("account")}
        self.assertEqual(lines["1100"], (Decimal("10.00"), Decimal("0.00")))
        self.assertEqual(lines["4100"], (Decimal("0.00"), Decimal("10.00")))

    def test_uncategorized_row_cannot_be_posted(self):
        with self.assertRaises(ValidationError):
            post_bank_row(self.company.pk, self.coffee.pk)
        self.assertFalse(JournalEntry.objects.exists())

    def test_posted_row_cannot_be_posted_or_recategorized(self):
        categorize_bank_row(self.company.pk, self.coffee.pk, account_id=account(self.company, "6400").pk)
        post_bank_row(self.company.pk, self.coffee.pk)
        with self.assertRaises(ValidationError):
            post_bank_row(self.company.pk, self.coffee.pk)
        with self.assertRaises(ValidationError):
            categorize_bank_row(self.company.pk, self.coffee.pk, account_id=account(self.company, "6000").pk)
        self.assertEqual(JournalEntry.objects.count(), 1)

    def test_cannot_categorize_to_own_bank_account(self):
        with self.assertRaises(ValidationError):
            categorize_bank_row(self.company.pk, self.coffee.pk, account_id=self.bank.ledger_account_id)

    def test_bank_row_amount_and_date_are_immutable(self):
        self.coffee.amount = Decimal("-5.00")
        with self.assertRaises(ValidationError):
            self.coffee.save()

"""
Bank feed import and reconciliation.

A feed is CSV text with a header row. Date, description and amount
columns are required; they may appear in any order and header matching
ignores case and punctuation ("Transaction Date" → date). Amounts are
signed: negative = money out (debit to the bank statement), positive =
money in (credit).
"""
import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Max
from django.utils import timezone
from django.utils.dateparse import parse_date

from ..exceptions import FeedFormatError, NotFoundError, UnknownAccount
from ..models import (Account, BankAccount, BankFeedImport, BankTransaction,
                      Customer, Vendor)
from .audit_helper import log_action
from .documents import SourceDocument, post_document
from .posting import from_cents, to_cents

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("date", "description", "amount")

# Normalized header → canonical column
HEADER_ALIASES = {
    "date": "date",
    "transactiondate": "date",
    "valuedate": "date",
    "postingdate": "date",
    "description": "description",
    "particulars": "description",
    "details": "description",
    "memo": "description",
    "narrative": "description",
    "amount": "amount",
    "reference": "reference",
    "ref": "reference",
}

# Category name fragment → description keywords
CATEGORY_KEYWORDS = {
    "rent": ["rent", "lease", "property"],
    "utilities": ["electric", "gas", "water", "internet", "phone"],
    "travel": ["hotel", "flight", "uber", "taxi", "fuel"],
    "office": ["office", "supplies", "equipment", "furniture"],
    "marketing": ["advertising", "marketing", "promotion", "social media"],
    "insurance": ["insurance", "premium", "coverage"],
    "legal": ["legal", "attorney", "lawyer", "court"],
    "accounting": ["accounting", "bookkeeping", "tax", "cpa"],
}

MAX_SUGGESTIONS = 5
_NON_ALNUM = re.compile(r"[^a-z0-9]")
_CURRENCY = re.compile(r"[$€£¥,\s]")


# ----------------------------
# Parsing
# ----------------------------
@dataclass(frozen=True)
class FeedRow:
    line_no: int
    transaction_date: object
    description: str
    amount: Decimal
    reference: str = ""

    @property
    def debit(self):
        # Money out
        return -self.amount if self.amount < 0 else Decimal("0.00")

    @property
    def credit(self):
        # Money in
        return self.amount if self.amount > 0 else Decimal("0.00")


@dataclass
class ParsedFeed:
    rows: List[FeedRow] = field(default_factory=list)
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class ImportResult:
    parsed_count: int
    skipped_count: int
    rows: List[BankTransaction]
    feed_import: BankFeedImport
    errors: List[str] = field(default_factory=list)


def normalize_header(header: str) -> str:
    key = _NON_ALNUM.sub("", (header or "").lstrip("\ufeff").lower())
    return HEADER_ALIASES.get(key, key)


def _read(raw_feed):
    if isinstance(raw_feed, bytes):
        try:
            raw_feed = raw_feed.decode("utf-8-sig")  # Handle BOM
        except UnicodeDecodeError as exc:
            raise FeedFormatError(f"Feed is not UTF-8 text: {exc.reason} at byte {exc.start}")
    return csv.reader(io.StringIO(raw_feed or ""))


def _header_map(raw_feed):
    """Canonical column name → index, from the first non-blank line."""
    for cells in _read(raw_feed):
        if not any(c.strip() for c in cells):
            continue
        columns = {}
        for index, cell in enumerate(cells):
            columns.setdefault(normalize_header(cell), index)
        return columns
    return {}


def header_errors(raw_feed) -> List[str]:
    columns = _header_map(raw_feed)
    if not columns:
        return ["Feed is empty"]
    return [
        f"Missing required header: {name}"
        for name in REQUIRED_COLUMNS
        if name not in columns
    ]


def validate_headers(raw_feed) -> bool:
    return not header_errors(raw_feed)


def parse_amount(value) -> Decimal:
    """ "1,234.50", "$-4.50", "(12.00)" → Decimal. """
    text = _CURRENCY.sub("", (value or "").strip())
    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    if not text:
        raise ValueError("empty amount")
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"invalid amount {value!r}")
    # Whole cents only
    try:
        amount = from_cents(to_cents(amount))
    except ValidationError:
        raise ValueError(f"invalid amount {value!r}")
    return -amount if negative else amount


def parse_feed_date(value):
    text = (value or "").strip()
    if not text:
        raise ValueError("missing date")
    try:
        parsed = parse_date(text)
    except ValueError:
        parsed = None
    if parsed is not None:
        return parsed
    for fmt in settings.LEDGER["BANK_FEED_DATE_FORMATS"]:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"invalid date {value!r}")


def parse_feed(raw_feed) -> ParsedFeed:
    """
    Parse feed text into rows.
    Blank lines are ignored. Rows with a missing or bad date, description
    or amount, or a zero amount, are dropped and counted in `skipped`
    with a row-level message in `errors`.
    """
    result = ParsedFeed()
    columns = None
    for line_no, cells in enumerate(_read(raw_feed), start=1):
        if not any(c.strip() for c in cells):
            continue
        if columns is None:
            columns = {}
            for index, cell in enumerate(cells):
                columns.setdefault(normalize_header(cell), index)
            missing = [c for c in REQUIRED_COLUMNS if c not in columns]
            if missing:
                raise FeedFormatError(
                    f"Missing required header(s): {', '.join(missing)}"
                )
            continue

        def cell(name):
            index = columns.get(name)
            if index is None or index >= len(cells):
                return ""
            return cells[index].strip()

        try:
            description = cell("description")
            if not description:
                raise ValueError("missing description")
            txn_date = parse_feed_date(cell("date"))
            amount = parse_amount(cell("amount"))
            if amount == 0:
                raise ValueError("zero amount")
        except ValueError as exc:
            result.skipped += 1
            result.errors.append(f"Row {line_no}: {exc}")
            continue

        result.rows.append(
            FeedRow(
                line_no=line_no,
                transaction_date=txn_date,
                description=description,
                amount=amount,
                reference=cell("reference"),
            )
        )
    return result


# ----------------------------
# Categorization suggestions
# ----------------------------
@dataclass
class CategorizationSuggestion:
    customers: list = field(default_factory=list)
    vendors: list = field(default_factory=list)
    accounts: list = field(default_factory=list)


def _name_match(name, description):
    name = (name or "").lower().strip()
    return bool(name) and (name in description or description in name)


def _keyword_match(description, category_name):
    for fragment, keywords in CATEGORY_KEYWORDS.items():
        if fragment in category_name:
            return any(k in description for k in keywords)
    return False


def _candidates(company_id):
    return (
        list(Customer.objects.for_company(company_id)),
        list(Vendor.objects.for_company(company_id)),
        list(
            Account.objects.active(company_id)
            .filter(ac_type="expense")
            .select_related("category")
        ),
    )


def suggest_categorization(company_id, description, candidates=None) -> CategorizationSuggestion:
    """Match a bank description against customer, vendor and expense account names."""
    company_id = getattr(company_id, "pk", company_id)
    text = (description or "").lower().strip()
    if not text:
        return CategorizationSuggestion()
    customers, vendors, accounts = candidates or _candidates(company_id)

    matched_accounts = []
    for acct in accounts:
        names = [acct.name.lower()]
        if acct.category_id:
            names.append(acct.category.name.lower())
        if any(_name_match(n, text) or _keyword_match(text, n) for n in names):
            matched_accounts.append(acct)

    matched_vendors = [v for v in vendors if _name_match(v.name, text)]
    # A matched vendor's usual expense account is a strong hint
    for vendor in matched_vendors:
        acct = vendor.default_expense_account
        if acct is not None and acct not in matched_accounts:
            matched_accounts.insert(0, acct)

    return CategorizationSuggestion(
        customers=[c for c in customers if _name_match(c.name, text)][:MAX_SUGGESTIONS],
        vendors=matched_vendors[:MAX_SUGGESTIONS],
        accounts=matched_accounts[:MAX_SUGGESTIONS],
    )


# ----------------------------
# Import & running balances
# ----------------------------
def recompute_running_balances(bank_account, from_date=None):
    """
    Prefix-sum running balances over (transaction_date, sequence),
    starting at the bank account's opening balance. Only rows on or
    after `from_date` are rewritten. Returns the closing balance.
    """
    rows = BankTransaction.objects.filter(bank_account=bank_account).order_by(
        "transaction_date", "sequence"
    )
    running = bank_account.opening_balance
    if from_date is not None:
        prior = rows.filter(transaction_date__lt=from_date).last()
        if prior is not None:
            running = prior.running_balance
        rows = rows.filter(transaction_date__gte=from_date)

    changed = []
    for row in rows:
        running += row.amount
        if row.running_balance != running:
            row.running_balance = running
            changed.append(row)
    if changed:
        BankTransaction.objects.bulk_update(changed, ["running_balance"])
    return running


def import_bank_feed(company_id, bank_account_id, raw_feed, file_name=None, actor=None) -> ImportResult:
    """
    Parse a feed and store its rows against a bank account.

    A feed without the required headers raises FeedFormatError before
    anything is written. Bad rows are dropped and reported. Imports into
    the same bank account run one at a time (row lock on the account).
    """
    company_id = getattr(company_id, "pk", company_id)
    errors = header_errors(raw_feed)
    if errors:
        raise FeedFormatError("; ".join(errors))
    parsed = parse_feed(raw_feed)

    with transaction.atomic():
        bank_account = (
            BankAccount.objects.for_company(company_id)
            .select_for_update()
            .filter(pk=bank_account_id)
            .first()
        )
        if bank_account is None:
            raise NotFoundError(
                f"Bank account {bank_account_id} not found for company {company_id}"
            )

        feed_import = BankFeedImport.objects.create(
            company_id=company_id,
            bank_account=bank_account,
            file_name=file_name or "",
            total_rows=len(parsed.rows) + parsed.skipped,
            parsed_rows=len(parsed.rows),
            skipped_rows=parsed.skipped,
            errors=parsed.errors,
        )

        last_seq = (
            BankTransaction.objects.filter(bank_account=bank_account)
            .aggregate(m=Max("sequence"))["m"] or 0
        )
        candidates = _candidates(company_id)
        created = []
        for offset, row in enumerate(parsed.rows, start=1):
            hint = suggest_categorization(company_id, row.description, candidates)
            bt = BankTransaction(
                company_id=company_id,
                bank_account=bank_account,
                feed_import=feed_import,
                transaction_date=row.transaction_date,
                description=row.description,
                amount=row.amount,
                reference=row.reference,
                sequence=last_seq + offset,
                suggested_customer=hint.customers[0] if hint.customers else None,
                suggested_vendor=hint.vendors[0] if hint.vendors else None,
                suggested_account=hint.accounts[0] if hint.accounts else None,
            )
            bt.save()
            created.append(bt)

        if created:
            recompute_running_balances(
                bank_account, min(r.transaction_date for r in created)
            )

        feed_import.status = "processed"
        feed_import.processed_at = timezone.now()
        feed_import.save(update_fields=["status", "processed_at"])

        log_action(
            action="import",
            instance=feed_import,
            actor=actor,
            changes={
                "bank_account_id": bank_account.pk,
                "parsed": len(created),
                "skipped": parsed.skipped,
            },
        )

    rows = list(
        BankTransaction.objects.filter(feed_import=feed_import).order_by("sequence")
    )
    logger.info(
        "Imported bank feed",
        extra={
            "company_id": company_id,
            "bank_account_id": bank_account_id,
            "import_id": feed_import.pk,
            "parsed": len(rows),
            "skipped": parsed.skipped,
        },
    )
    return ImportResult(
        parsed_count=len(rows),
        skipped_count=parsed.skipped,
        rows=rows,
        feed_import=feed_import,
        errors=parsed.errors,
    )


# ----------------------------
# Categorize & post
# ----------------------------
def _lock_bank_row(company_id, row_id):
    row = (
        BankTransaction.objects.for_company(company_id)
        .select_for_update()
        .filter(pk=row_id)
        .first()
    )
    if row is None:
        raise NotFoundError(f"Bank transaction {row_id} not found for company {company_id}")
    return row


def categorize_bank_row(company_id, row_id, account_id=None, customer_id=None,
                        vendor_id=None, actor=None) -> BankTransaction:
    """Attach a category account and/or counterparty to an unposted row."""
    company_id = getattr(company_id, "pk", company_id)
    with transaction.atomic():
        row = _lock_bank_row(company_id, row_id)
        if row.status != "unapplied":
            raise ValidationError(f"Cannot recategorize a {row.status} bank transaction.")

        if account_id is not None:
            acct = Account.objects.active(company_id).filter(pk=account_id).first()
            if acct is None:
                raise UnknownAccount(f"Unknown account {account_id} for company {company_id}")
            if acct.pk == row.bank_account.ledger_account_id:
                raise ValidationError("A bank row cannot be categorized to its own bank account.")
            row.category_account = acct
        if customer_id is not None:
            row.customer = Customer.objects.for_company(company_id).filter(pk=customer_id).first()
            if row.customer is None:
                raise NotFoundError(f"Customer {customer_id} not found")
        if vendor_id is not None:
            row.vendor = Vendor.objects.for_company(company_id).filter(pk=vendor_id).first()
            if row.vendor is None:
                raise NotFoundError(f"Vendor {vendor_id} not found")
        row.save()

        log_action(
            action="categorize",
            instance=row,
            actor=actor,
            changes={
                "category_account_id": row.category_account_id,
                "customer_id": row.customer_id,
                "vendor_id": row.vendor_id,
            },
        )
    return row


def post_bank_row(company_id, row_id, actor=None):
    """Post a categorized row to the ledger (bank vs. category account)."""
    company_id = getattr(company_id, "pk", company_id)
    with transaction.atomic():
        row = _lock_bank_row(company_id, row_id)
        if row.status != "unapplied":
            raise ValidationError(f"Cannot post a {row.status} bank transaction.")
        return post_document(company_id, SourceDocument("bank_row", row), actor=actor)

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date

from ..exceptions import (AlreadyPostedDifferentPayload, AlreadyReversed,
                          InsufficientLines, InvalidAmount,
                          TransactionNotFound, UnbalancedTransaction,
                          UnknownAccount)
from ..models import Account, Company, JournalEntry, JournalLine
from ..models.journal import fingerprint, posting_payload
from .audit_helper import log_action

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
SIDES = ("debit", "credit")
# Largest magnitude a money column (18 digits, 2 decimals) can store
MAX_AMOUNT = Decimal(10) ** 16

# source_type → hook(company_id, source_id), run inside the reversal's
# transaction so the source document follows its ledger entry
REVERSAL_HOOKS = {}


@dataclass(frozen=True)
class PostingLine:
    """One side of a posting: which account, which side, how much."""
    account_id: int
    side: str
    amount: Decimal
    description: str = ""


@dataclass(frozen=True)
class SourceRef:
    """Business document that caused a posting, e.g. ("invoice", 12)."""
    source_type: str
    source_id: int


def debit(account, amount, description=""):
    return PostingLine(getattr(account, "pk", account), "debit", amount, description)


def credit(account, amount, description=""):
    return PostingLine(getattr(account, "pk", account), "credit", amount, description)


def to_cents(amount) -> int:
    """
    Convert an amount to integer cents.
    Floats go through str() so binary drift never reaches a comparison;
    anything finer than a cent is rejected.
    """
    try:
        if isinstance(amount, float):
            value = Decimal(str(amount))
        else:
            value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    if not value.is_finite():
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    if abs(value) >= MAX_AMOUNT:
        raise InvalidAmount(f"Amount {value} is out of range")
    try:
        whole_cents = value == value.quantize(CENT)
    except InvalidOperation:
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    if not whole_cents:
        raise InvalidAmount(f"Amount {value} has sub-cent precision")
    return int(value * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def _coerce_date(value):
    if isinstance(value, str):
        parsed = parse_date(value)
        if parsed is None:
            raise ValidationError(f"Invalid posting date: {value!r}")
        return parsed
    return value


def _validate_lines(company_id, lines):
    """
    Validate a posting before anything is written.
    Order: accounts, line count, balance, per-line amounts.
    Returns [(account, side, cents, description)].
    """
    lines = list(lines)

    # 1. Every account exists in this company's chart
    account_ids = {line.account_id for line in lines}
    accounts = Account.objects.for_company(company_id).in_bulk(account_ids)
    missing = sorted(str(a) for a in account_ids if a not in accounts)
    if missing:
        raise UnknownAccount(
            f"Unknown account(s) for company {company_id}: {', '.join(missing)}"
        )
    inactive = sorted(a.code for a in accounts.values() if not a.is_active)
    if inactive:
        raise ValidationError(f"Cannot post to inactive account(s): {', '.join(inactive)}")

    # 2. Double entry needs at least two lines
    if len(lines) < 2:
        raise InsufficientLines("A transaction needs at least two lines.")

    # 3. Debits equal credits, compared in integer cents
    prepared = []
    total_debit = 0
    total_credit = 0
    for line in lines:
        if line.side not in SIDES:
            raise ValidationError(f"Line side must be debit or credit, got {line.side!r}")
        cents = to_cents(line.amount)
        if line.side == "debit":
            total_debit += cents
        else:
            total_credit += cents
        prepared.append((accounts[line.account_id], line.side, cents, line.description or ""))

    if total_debit != total_credit:
        raise UnbalancedTransaction(
            f"Transaction not balanced: debits={from_cents(total_debit)}, "
            f"credits={from_cents(total_credit)}"
        )

    # 4. Each line carries a positive amount on exactly one side
    for acct, side, cents, _ in prepared:
        if cents <= 0:
            raise InvalidAmount(
                f"Line amounts must be positive ({acct.code} {side} {from_cents(cents)})"
            )
    return prepared


def _payload_for(company_id, date, prepared):
    lines = [
        {
            "acct": acct.pk,
            "debit": str(from_cents(cents if side == "debit" else 0)),
            "credit": str(from_cents(cents if side == "credit" else 0)),
            "desc": desc,
        }
        for acct, side, cents, desc in prepared
    ]
    return posting_payload(company_id, date, lines)


def _lock_company(company_id):
    # Serializes postings per company
    company = Company.objects.select_for_update().filter(pk=company_id).first()
    if company is None:
        raise UnknownAccount(f"Company {company_id} does not exist")
    return company


def _insert_entry(company, date, description, prepared, *, fp, reference=None,
                  source_type=None, source_id=None, reverses=None, actor=None):
    je = JournalEntry.objects.create(
        company=company,
        date=date,
        description=description or "",
        reference=reference,
        source_type=source_type,
        source_id=source_id,
        posting_fingerprint=fp,
        reverses=reverses,
        created_by=actor or "",
    )
    for line_no, (acct, side, cents, desc) in enumerate(prepared, start=1):
        amount = from_cents(cents)
        JournalLine.objects.create(
            company=company,
            journal=je,
            line_no=line_no,
            account=acct,
            description=desc,
            debit_amount=amount if side == "debit" else Decimal("0.00"),
            credit_amount=amount if side == "credit" else Decimal("0.00"),
        )
    return je


def post_transaction(company_id, date, description, source_ref, lines, *,
                     reference=None, actor=None) -> JournalEntry:
    """
    Validate and persist a balanced set of ledger lines as one JournalEntry.

    Nothing is written unless every check passes; the entry and its lines
    are inserted in one database transaction under a per-company lock.

    When `source_ref` names a document that already has an unreversed
    entry, the call is a replay: an identical payload returns the existing
    entry, a different one raises AlreadyPostedDifferentPayload.
    """
    company_id = getattr(company_id, "pk", company_id)
    date = _coerce_date(date)
    prepared = _validate_lines(company_id, lines)
    fp = fingerprint(_payload_for(company_id, date, prepared))

    with transaction.atomic():
        company = _lock_company(company_id)

        # Idempotency & immutability
        if source_ref is not None:
            existing = (
                JournalEntry.objects.for_company(company_id)
                .filter(
                    source_type=source_ref.source_type,
                    source_id=source_ref.source_id,
                    reversed_by__isnull=True,
                )
                .first()
            )
            if existing is not None:
                if existing.posting_fingerprint == fp:
                    logger.info(
                        "Posting replay ignored",
                        extra={"company_id": company_id, "journal_id": existing.pk},
                    )
                    return existing
                raise AlreadyPostedDifferentPayload(
                    f"{source_ref.source_type} {source_ref.source_id} already posted "
                    "with a different payload."
                )

        je = _insert_entry(
            company, date, description, prepared,
            fp=fp,
            reference=reference,
            source_type=source_ref.source_type if source_ref else None,
            source_id=source_ref.source_id if source_ref else None,
            actor=actor,
        )

        log_action(
            action="post",
            instance=je,
            actor=actor,
            company=company,
            changes={
                "source_type": je.source_type,
                "source_id": je.source_id,
                "lines": len(prepared),
                "amount": str(from_cents(sum(c for _, s, c, _ in prepared if s == "debit"))),
            },
        )

    logger.info(
        "Posted journal entry",
        extra={
            "company_id": company_id,
            "journal_id": je.pk,
            "source_type": je.source_type,
            "source_id": je.source_id,
        },
    )
    return je


def reverse_transaction(company_id, transaction_id, on_date=None, actor=None) -> JournalEntry:
    """
    Post the mirror image of an existing entry (debits ↔ credits),
    dated today unless `on_date` is given, and link it to the original.
    A document that owns the entry (a payment application, a posted bank
    row, an invoice or bill) is rolled back in the same transaction.
    """
    company_id = getattr(company_id, "pk", company_id)
    on_date = _coerce_date(on_date) or timezone.localdate()

    with transaction.atomic():
        company = Company.objects.select_for_update().filter(pk=company_id).first()
        if company is None:
            raise TransactionNotFound(f"Transaction {transaction_id} not found")

        original = (
            JournalEntry.objects.for_company(company_id)
            .filter(pk=transaction_id)
            .first()
        )
        if original is None:
            raise TransactionNotFound(
                f"Transaction {transaction_id} not found for company {company_id}"
            )
        if JournalEntry.objects.filter(reverses=original).exists():
            raise AlreadyReversed(f"Transaction {transaction_id} is already reversed")

        prepared = [
            (
                line.account,
                "credit" if line.side == "debit" else "debit",
                to_cents(line.amount),
                line.description,
            )
            for line in original.lines.select_related("account").order_by("line_no")
        ]
        fp = fingerprint(_payload_for(company_id, on_date, prepared))
        reversal = _insert_entry(
            company, on_date,
            f"Reversal of JE {original.pk}: {original.description}".strip(),
            prepared,
            fp=fp,
            reference=original.reference,
            source_type="reversal",
            source_id=original.pk,
            reverses=original,
            actor=actor,
        )
        hook = REVERSAL_HOOKS.get(original.source_type)
        if hook is not None:
            hook(company_id, original.source_id)

        log_action(
            action="reverse",
            instance=original,
            actor=actor,
            company=company,
            changes={"reversal_id": reversal.pk, "date": on_date.isoformat()},
        )

    logger.info(
        "Reversed journal entry",
        extra={"company_id": company_id, "journal_id": original.pk, "reversal_id": reversal.pk},
    )
    return reversal

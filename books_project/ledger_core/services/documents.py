"""
Business documents → ledger postings.

Every document kind the ledger understands is posted through one entry
point, `post_document()`. A registry maps the document kind to the
function that turns it into balanced PostingLines, plus an optional hook
that syncs the document's own state in the same database transaction.
"""
import logging
from dataclasses import dataclass, field
from datetime import date as date_type
from decimal import Decimal
from typing import Any, Callable, Optional

from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.utils import timezone

from ..exceptions import UnknownAccount
from ..models import (Account, BankTransaction, BankTransactionBill,
                      BankTransactionInvoice, Bill, Invoice, JournalEntry)
from .audit_helper import log_action
from .chart import get_control_account
from .posting import (REVERSAL_HOOKS, SourceRef, credit, debit, from_cents,
                      post_transaction, reverse_transaction, to_cents)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceDocument:
    """Tagged document: kind is one of the registered DOCUMENT_KINDS."""
    kind: str
    payload: Any


@dataclass(frozen=True)
class OpeningBalance:
    account: Account
    date: date_type
    amount: Decimal

    @property
    def pk(self):
        # One opening balance per account
        return self.account.pk

    @property
    def company_id(self):
        return self.account.company_id


@dataclass
class DocumentPosting:
    date: date_type
    description: str
    lines: list = field(default_factory=list)
    reference: Optional[str] = None


@dataclass(frozen=True)
class _Handler:
    build: Callable[[Any], DocumentPosting]
    after_post: Optional[Callable[[Any], None]] = None


DOCUMENT_KINDS = {}


def document_kind(kind, after_post=None, after_reverse=None):
    """Register a line builder for a document kind."""
    def register(build):
        DOCUMENT_KINDS[kind] = _Handler(build=build, after_post=after_post)
        if after_reverse is not None:
            REVERSAL_HOOKS[kind] = after_reverse
        return build
    return register


def _ar_account(invoice):
    return invoice.customer.default_ar_account or get_control_account(invoice.company, "ar")


def _ap_account(bill):
    return bill.vendor.default_ap_account or get_control_account(bill.company, "ap")


# ----------------------------
# Document state hooks
# ----------------------------
def _sync_paid_amount(doc):
    """
    Recompute paid_amount from applications. Marks the document paid when
    fully offset and reopens a paid one when a payment is taken back.
    """
    paid = doc.payments.aggregate(total=models.Sum("applied_amount"))["total"] or Decimal("0.00")
    doc.paid_amount = paid
    if doc.outstanding_amount == 0 and doc.status in ("pending", "overdue"):
        doc.status = "paid"
    elif doc.outstanding_amount > 0 and doc.status == "paid":
        overdue = doc.due_date is not None and doc.due_date < timezone.localdate()
        doc.status = "overdue" if overdue else "pending"
    doc.save(update_fields=["paid_amount", "status"])


def _after_invoice_payment(application):
    invoice = Invoice.objects.select_for_update().get(pk=application.invoice_id)
    _sync_paid_amount(invoice)


def _after_bill_payment(application):
    bill = Bill.objects.select_for_update().get(pk=application.bill_id)
    _sync_paid_amount(bill)


def _after_bank_row(row):
    if row.status != "posted":
        row.transition_to("posted")


def _reset_row_status(row):
    """Bank row status from what is still applied after an unapply."""
    applied = row.applied_total()
    if applied == 0:
        new_status = "unapplied"
    elif applied < abs(row.amount):
        new_status = "partially_applied"
    else:
        new_status = "fully_applied"
    if new_status != row.status:
        row.transition_to(new_status)


def _unapply(application_model, document_model, document_field):
    """Reversal hook for a payment: drop the application, resync both sides."""
    def hook(company_id, application_id):
        application = (
            application_model.objects.for_company(company_id)
            .filter(pk=application_id)
            .first()
        )
        if application is None:
            return
        doc = document_model.objects.select_for_update().get(
            pk=getattr(application, f"{document_field}_id")
        )
        row = BankTransaction.objects.select_for_update().get(
            pk=application.bank_transaction_id
        )
        changes = {
            f"{document_field}_id": doc.pk,
            "bank_transaction_id": row.pk,
            "amount": str(application.applied_amount),
        }
        application.delete()
        _sync_paid_amount(doc)
        _reset_row_status(row)
        log_action(action="unapply_payment", instance=doc, changes=changes)
    return hook


def _unpost_bank_row(company_id, row_id):
    row = (
        BankTransaction.objects.for_company(company_id)
        .select_for_update()
        .filter(pk=row_id)
        .first()
    )
    if row is not None and row.status == "posted":
        row.transition_to("unapplied")


def _void(document_model, kind):
    """Reversal hook for a recognition entry: the document is cancelled."""
    def hook(company_id, doc_id):
        doc = (
            document_model.objects.for_company(company_id)
            .select_for_update()
            .filter(pk=doc_id)
            .first()
        )
        if doc is None or doc.status == "cancelled":
            return
        if doc.payments.exists():
            raise ValidationError(
                f"Cannot reverse a {kind} with applied payments; reverse the payments first."
            )
        doc.status = "cancelled"
        doc.save(update_fields=["status"])
    return hook


# ----------------------------
# Line builders
# ----------------------------
@document_kind("invoice", after_reverse=_void(Invoice, "invoice"))
def _invoice_lines(invoice: Invoice) -> DocumentPosting:
    """Dr AR (total) / Cr revenue (amount) / Cr sales tax payable (tax)."""
    label = f"Invoice {invoice.invoice_number}"
    lines = [
        debit(_ar_account(invoice), invoice.total, f"AR for {label}"),
        credit(invoice.revenue_account, invoice.amount, f"Revenue: {label}"),
    ]
    if invoice.tax_amount > 0:
        lines.append(
            credit(get_control_account(invoice.company, "sales_tax"),
                   invoice.tax_amount, f"Sales tax: {label}")
        )
    return DocumentPosting(
        date=invoice.issue_date,
        description=f"{label} - {invoice.customer.name}",
        reference=invoice.invoice_number,
        lines=lines,
    )


@document_kind("bill", after_reverse=_void(Bill, "bill"))
def _bill_lines(bill: Bill) -> DocumentPosting:
    """Dr expense (amount) / Dr sales tax (tax) / Cr AP (total)."""
    label = f"Bill {bill.bill_number}"
    lines = [debit(bill.expense_account, bill.amount, f"Expense: {label}")]
    if bill.tax_amount > 0:
        lines.append(
            debit(get_control_account(bill.company, "sales_tax"),
                  bill.tax_amount, f"Sales tax: {label}")
        )
    lines.append(credit(_ap_account(bill), bill.total, f"AP for {label}"))
    return DocumentPosting(
        date=bill.issue_date,
        description=f"{label} - {bill.vendor.name}",
        reference=bill.bill_number,
        lines=lines,
    )


@document_kind(
    "invoice_payment",
    after_post=_after_invoice_payment,
    after_reverse=_unapply(BankTransactionInvoice, Invoice, "invoice"),
)
def _invoice_payment_lines(application: BankTransactionInvoice) -> DocumentPosting:
    """Dr bank / Cr AR for the applied amount."""
    row = application.bank_transaction
    invoice = application.invoice
    label = f"invoice {invoice.invoice_number}"
    amt = application.applied_amount
    return DocumentPosting(
        date=row.transaction_date,
        description=f"Payment for {label}",
        lines=[
            debit(row.bank_account.ledger_account, amt, f"Bank receipt for {label}"),
            credit(_ar_account(invoice), amt, f"Clear AR for {label}"),
        ],
    )


@document_kind(
    "bill_payment",
    after_post=_after_bill_payment,
    after_reverse=_unapply(BankTransactionBill, Bill, "bill"),
)
def _bill_payment_lines(application: BankTransactionBill) -> DocumentPosting:
    """Dr AP / Cr bank for the applied amount."""
    row = application.bank_transaction
    bill = application.bill
    label = f"bill {bill.bill_number}"
    amt = application.applied_amount
    return DocumentPosting(
        date=row.transaction_date,
        description=f"Payment of {label}",
        lines=[
            debit(_ap_account(bill), amt, f"Clear AP for {label}"),
            credit(row.bank_account.ledger_account, amt, f"Bank payment for {label}"),
        ],
    )


@document_kind("bank_row", after_post=_after_bank_row, after_reverse=_unpost_bank_row)
def _bank_row_lines(row: BankTransaction) -> DocumentPosting:
    """Inflow: Dr bank / Cr category. Outflow: Dr category / Cr bank."""
    if row.category_account_id is None:
        raise ValidationError("Bank transaction must be categorized before posting.")
    bank = row.bank_account.ledger_account
    amt = abs(row.amount)
    if row.is_inflow:
        lines = [debit(bank, amt, row.description), credit(row.category_account, amt, row.description)]
    else:
        lines = [debit(row.category_account, amt, row.description), credit(bank, amt, row.description)]
    return DocumentPosting(
        date=row.transaction_date,
        description=row.description,
        reference=row.reference or None,
        lines=lines,
    )


@document_kind("opening_balance")
def _opening_balance_lines(ob: OpeningBalance) -> DocumentPosting:
    """Account on its normal side against Opening Balance Equity."""
    account = ob.account
    equity = get_control_account(account.company, "opening_balance_equity")
    if equity.pk == account.pk:
        raise ValidationError("Opening Balance Equity cannot carry its own opening balance.")
    amount = from_cents(to_cents(ob.amount))
    # A negative amount sits on the account's contra side
    on_normal_side = (amount > 0)
    amt = abs(amount)
    label = f"Opening balance {account.code}"
    if account.is_debit_normal == on_normal_side:
        lines = [debit(account, amt, label), credit(equity, amt, label)]
    else:
        lines = [debit(equity, amt, label), credit(account, amt, label)]
    return DocumentPosting(date=ob.date, description=label, lines=lines)


def post_document(company_id, document: SourceDocument, actor=None) -> JournalEntry:
    """
    Post a business document through the posting engine.
    The document's own state (paid amounts, row status) is synced in the
    same database transaction as the ledger lines.
    """
    company_id = getattr(company_id, "pk", company_id)
    handler = DOCUMENT_KINDS.get(document.kind)
    if handler is None:
        raise ValidationError(f"Unknown document kind: {document.kind!r}")

    payload = document.payload
    if payload.company_id != company_id:
        raise ValidationError(
            f"{document.kind} {payload.pk} does not belong to company {company_id}"
        )

    with transaction.atomic():
        posting = handler.build(payload)
        je = post_transaction(
            company_id,
            posting.date,
            posting.description,
            SourceRef(document.kind, payload.pk),
            posting.lines,
            reference=posting.reference,
            actor=actor,
        )
        if handler.after_post is not None:
            handler.after_post(payload)
    return je


# ----------------------------
# Document workflows
# ----------------------------
def recognition_entry(doc, kind):
    """The live (unreversed) entry that recognized an invoice or bill."""
    return (
        JournalEntry.objects.for_company(doc.company_id)
        .filter(source_type=kind, source_id=doc.pk, reversed_by__isnull=True)
        .first()
    )


def issue_invoice(invoice: Invoice, actor=None) -> JournalEntry:
    """Recognize revenue and the receivable for an invoice."""
    if invoice.status == "cancelled":
        raise ValidationError("Cannot issue a cancelled invoice.")
    return post_document(invoice.company_id, SourceDocument("invoice", invoice), actor=actor)


def issue_bill(bill: Bill, actor=None) -> JournalEntry:
    """Recognize the expense and the payable for a bill."""
    if bill.status == "cancelled":
        raise ValidationError("Cannot issue a cancelled bill.")
    return post_document(bill.company_id, SourceDocument("bill", bill), actor=actor)


def _cancel(model, doc, kind, actor):
    with transaction.atomic():
        doc = model.objects.select_for_update().get(pk=doc.pk)
        if doc.status == "cancelled":
            return doc
        if doc.payments.exists():
            raise ValidationError(
                f"Cannot cancel {kind} with applied payments; reverse the payments first."
            )
        je = recognition_entry(doc, kind)
        if je is not None:
            reverse_transaction(doc.company_id, je.pk, actor=actor)
        doc.status = "cancelled"
        doc.save(update_fields=["status"])
        log_action(
            action="cancel",
            instance=doc,
            actor=actor,
            changes={"reversed_journal_id": je.pk if je else None},
        )
    logger.info(
        "Cancelled %s", kind,
        extra={"company_id": doc.company_id, "document_id": doc.pk},
    )
    return doc


def cancel_invoice(invoice: Invoice, actor=None) -> Invoice:
    """Reverse the recognition entry and mark the invoice cancelled."""
    return _cancel(Invoice, invoice, "invoice", actor)


def cancel_bill(bill: Bill, actor=None) -> Bill:
    return _cancel(Bill, bill, "bill", actor)


def post_opening_balance(company_id, account_id, date, amount, actor=None) -> JournalEntry:
    company_id = getattr(company_id, "pk", company_id)
    account = Account.objects.for_company(company_id).filter(pk=account_id).first()
    if account is None:
        raise UnknownAccount(f"Unknown account {account_id} for company {company_id}")
    return post_document(
        company_id,
        SourceDocument("opening_balance", OpeningBalance(account, date, amount)),
        actor=actor,
    )

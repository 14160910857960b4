import logging

from django.core.exceptions import ValidationError
from django.db import transaction

from ..exceptions import NotFoundError
from ..models import (BankTransaction, BankTransactionBill,
                      BankTransactionInvoice, Bill, Invoice)
from .audit_helper import log_action
from .documents import SourceDocument, post_document
from .posting import from_cents, to_cents

logger = logging.getLogger(__name__)


# ----------------------------
# Payment-related workflows
# ----------------------------
def _lock_row(company_id, bank_row_id):
    bt = (
        BankTransaction.objects.for_company(company_id)
        .select_for_update()
        .filter(pk=bank_row_id)
        .first()
    )
    if bt is None:
        raise NotFoundError(f"Bank transaction {bank_row_id} not found")
    if bt.status == "posted":
        raise ValidationError("Bank transaction was already categorized and posted.")
    return bt


def _update_row_status(bt, total_applied):
    # Set status by comparing applied total vs the row's absolute amount
    if total_applied >= abs(bt.amount):
        bt.transition_to("fully_applied")
    else:
        bt.transition_to("partially_applied")


def apply_bank_row_to_invoice(company_id, bank_row_id, invoice_id, amount, actor=None):
    """
    Apply part (or all) of a deposit to an invoice.
    Creates the application, posts Dr bank / Cr AR, updates the invoice's
    paid amount and the bank row's status as one unit.
    Returns (application, journal_entry).
    """
    company_id = getattr(company_id, "pk", company_id)
    amount = from_cents(to_cents(amount))
    if amount <= 0:
        raise ValidationError("Applied amount must be positive")

    # Everything inside either succeeds
    # as one unit or rolls back if something fails
    with transaction.atomic():
        # Lock the bank transaction and invoice rows
        bt = _lock_row(company_id, bank_row_id)
        inv = (
            Invoice.objects.for_company(company_id)
            .select_for_update()
            .filter(pk=invoice_id)
            .first()
        )
        if inv is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if not inv.is_open:
            raise ValidationError(f"Invoice {inv.invoice_number} is {inv.status}")

        # Validate invoice outstanding
        if amount > inv.outstanding_amount:
            raise ValidationError("Payment exceeds invoice outstanding amount")

        # Validation: prevent over-allocation of the bank row
        total_applied = bt.applied_total()
        if total_applied + amount > abs(bt.amount):
            raise ValidationError("Applied amounts exceed bank transaction amount")

        application = BankTransactionInvoice.objects.create(
            company_id=company_id,
            bank_transaction=bt,
            invoice=inv,
            applied_amount=amount,
        )
        je = post_document(company_id, SourceDocument("invoice_payment", application), actor=actor)
        _update_row_status(bt, total_applied + amount)

        log_action(
            action="apply_payment",
            instance=application,
            actor=actor,
            changes={
                "invoice_id": inv.pk,
                "bank_transaction_id": bt.pk,
                "amount": str(amount),
                "journal_id": je.pk,
            },
        )

    logger.info(
        "Applied bank row to invoice",
        extra={"company_id": company_id, "bank_transaction_id": bt.pk,
               "invoice_id": inv.pk, "amount": str(amount)},
    )
    return application, je


def apply_bank_row_to_bill(company_id, bank_row_id, bill_id, amount, actor=None):
    """Apply part (or all) of a withdrawal to a bill (Dr AP / Cr bank)."""
    company_id = getattr(company_id, "pk", company_id)
    amount = from_cents(to_cents(amount))
    if amount <= 0:
        raise ValidationError("Applied amount must be positive")

    with transaction.atomic():
        bt = _lock_row(company_id, bank_row_id)
        bill = (
            Bill.objects.for_company(company_id)
            .select_for_update()
            .filter(pk=bill_id)
            .first()
        )
        if bill is None:
            raise NotFoundError(f"Bill {bill_id} not found")
        if not bill.is_open:
            raise ValidationError(f"Bill {bill.bill_number} is {bill.status}")

        if amount > bill.outstanding_amount:
            raise ValidationError("Payment exceeds bill outstanding amount")

        total_applied = bt.applied_total()
        if total_applied + amount > abs(bt.amount):
            raise ValidationError("Applied amounts exceed bank transaction amount")

        application = BankTransactionBill.objects.create(
            company_id=company_id,
            bank_transaction=bt,
            bill=bill,
            applied_amount=amount,
        )
        je = post_document(company_id, SourceDocument("bill_payment", application), actor=actor)
        _update_row_status(bt, total_applied + amount)

        log_action(
            action="apply_payment",
            instance=application,
            actor=actor,
            changes={
                "bill_id": bill.pk,
                "bank_transaction_id": bt.pk,
                "amount": str(amount),
                "journal_id": je.pk,
            },
        )

    logger.info(
        "Applied bank row to bill",
        extra={"company_id": company_id, "bank_transaction_id": bt.pk,
               "bill_id": bill.pk, "amount": str(amount)},
    )
    return application, je


def apply_bank_row_to_invoices(company_id, bank_row_id, applications, actor=None):
    """Split one deposit across several invoices: [{"invoice_id", "amount"}]."""
    with transaction.atomic():
        return [
            apply_bank_row_to_invoice(
                company_id, bank_row_id, ap["invoice_id"], ap["amount"], actor=actor
            )
            for ap in applications
        ]

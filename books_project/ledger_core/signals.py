from django.core.exceptions import ValidationError
from django.db.models.signals import pre_delete
from django.dispatch import receiver

from .models import (Account, BankTransaction, BankTransactionBill,
                     BankTransactionInvoice, Bill, Invoice, JournalLine)

""" Block invoice deletion if any payments are applied."""


# pre_delete signal auto-fires just before Django deletes a model instance
@receiver(pre_delete, sender=Invoice)
def prevent_delete_invoice_with_payments(sender, instance, **kwargs):
    # Check if any BankTransactionInvoice rows point to this invoice exist
    if BankTransactionInvoice.objects.filter(invoice=instance).exists():
        raise ValidationError("Cannot delete invoice with applied payments.")


"""Block bill deletion if any payments are applied."""


@receiver(pre_delete, sender=Bill)
def prevent_delete_bill_with_payments(sender, instance, **kwargs):
    if BankTransactionBill.objects.filter(bill=instance).exists():
        raise ValidationError("Cannot delete bill with applied payments.")


"""Block deletion if account has ever been used in a journal line."""


@receiver(pre_delete, sender=Account)
def prevent_delete_account_with_journal_lines(sender, instance, **kwargs):
    if JournalLine.objects.filter(account=instance).exists():
        raise ValidationError("Cannot delete account used in journal lines.")


"""Block deletion of bank rows that reached the ledger."""


@receiver(pre_delete, sender=BankTransaction)
def prevent_delete_posted_bank_row(sender, instance, **kwargs):
    if instance.status != "unapplied":
        raise ValidationError(f"Cannot delete a {instance.status} bank transaction.")

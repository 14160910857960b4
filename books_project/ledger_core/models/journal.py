import hashlib
import json
from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import AppendOnlyManager
from .account import Account
from .company import Company

# Sides a ledger line can sit on
SIDES = [
    ("debit", "Debit"),
    ("credit", "Credit"),
]


# ---------- Journal (Header) & JournalLine ----------
class JournalEntry(models.Model):  # Represents one accounting transaction
    """
    Posting group: a balanced set of JournalLines written together.
    Rows are insert-only; corrections go through a reversing entry
    linked back with `reverses`.
    """
    # Multi-tenant: every entry belongs to a company
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # Business metadata
    date = models.DateField()
    reference = models.CharField(max_length=200, null=True, blank=True)
    description = models.TextField(blank=True, default="")
    posted_at = models.DateTimeField(auto_now_add=True)
    # Who (or which process) posted it
    created_by = models.CharField(max_length=150, blank=True, default="")
    # polymorphic source info
    # (invoice, bill, invoice_payment, bill_payment, bank_row, opening_balance)
    source_type = models.CharField(
        max_length=50, null=True, blank=True
    )  # Helps trace back where the JE originated
    source_id = models.BigIntegerField(null=True, blank=True)
    # Fingerprint-based idempotency (safe to call twice if nothing has changed)
    posting_fingerprint = models.CharField(
        max_length=64, null=True, blank=True)
    # Set on a reversing entry; one reversal per original at most
    reverses = models.OneToOneField(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="reversed_by",
    )

    # Enforce tenant scoping, refuse bulk update/delete
    objects = AppendOnlyManager()

    class Meta:
        # Speed up listing & filtering
        indexes = [
            models.Index(fields=["company", "date"]),
            models.Index(fields=["company", "source_type", "source_id"]),
        ]
        ordering = ("date", "id")
        verbose_name_plural = "journal entries"

    def __str__(self):
        return f"JE {self.pk} {self.date} {self.description}"

    # Aggregate all debit and credit amounts across entry’s lines
    def compute_totals(self):
        """Return debits, credits sums for lines"""
        aggs = self.lines.aggregate(
            total_debit=models.Sum("debit_amount"),
            total_credit=models.Sum("credit_amount"),
        )
        return (
            aggs["total_debit"] or Decimal("0.00"),
            aggs["total_credit"] or Decimal("0.00"),
        )

    # True if double-entry rule holds: total debits = total credits
    def is_balanced(self):
        debit, credit = self.compute_totals()
        return debit == credit

    @property
    def is_reversed(self):
        return hasattr(self, "reversed_by")

    def save(self, *args, **kwargs):
        if self.pk and JournalEntry.objects.filter(pk=self.pk).exists():
            # Posted entries are immutable
            raise ValidationError(
                "Cannot modify a posted JournalEntry. Post a reversing entry instead."
            )
        if self.reverses_id and self.reverses.company_id != self.company_id:
            raise ValidationError(
                "A reversal must belong to the same company as the original."
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            "Cannot delete a JournalEntry. Post a reversing entry instead."
        )


def posting_payload(company_id, date, lines):
    """Build the canonical JSON string for a list of line dicts."""
    payload = {
        "company": company_id,
        # Date (always in ISO format like "2025-09-15")
        "date": date.isoformat(),
        "lines": lines,
    }
    # Compact, key-sorted JSON so equal payloads hash equally
    return json.dumps(payload, separators=(",", ":"), sort_keys=True)


def fingerprint(payload):
    # hash (sha256) of the canonical JSON string
    return hashlib.sha256(payload.encode()).hexdigest()


class JournalLine(models.Model):  # Stores Lines ( credits / debits )
    """
    Each line belongs to a journal entry and to a GL account.
    Exactly one of debit_amount / credit_amount is nonzero.
    """

    # Belongs to company & a journal entry
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    journal = models.ForeignKey(
        JournalEntry,
        on_delete=models.CASCADE,
        related_name="lines",  # default reverse name
    )
    # Position within the entry (stable GL ordering)
    line_no = models.PositiveSmallIntegerField(default=1)

    # Must point to one Account (can’t delete account if lines exist → PROTECT)
    account = models.ForeignKey(Account, on_delete=models.PROTECT)

    description = models.CharField(max_length=400, blank=True, default="")

    debit_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=0)
    credit_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=0)

    # Enforce tenant scoping, refuse bulk update/delete
    objects = AppendOnlyManager()

    class Meta:
        # For fast queries like “all lines for this account” /
        # “all lines in this JE.”
        indexes = [
            models.Index(fields=["company", "account"]),
            models.Index(fields=["company", "journal"]),
        ]
        ordering = ("journal_id", "line_no")
        constraints = [
            # Debits and credits are never negative
            models.CheckConstraint(
                condition=(
                    models.Q(debit_amount__gte=0) &
                    models.Q(credit_amount__gte=0)
                ),
                name="jl_non_negative_amounts",
            ),
            # Exactly one side carries the amount
            models.CheckConstraint(
                condition=(
                    (models.Q(debit_amount__gt=0) & models.Q(credit_amount=0)) |
                    (models.Q(debit_amount=0) & models.Q(credit_amount__gt=0))
                ),
                name="jl_debit_xor_credit",
            ),
            models.UniqueConstraint(
                fields=["journal", "line_no"], name="uq_jl_journal_line_no"
            ),
        ]

    # Show journal, account, and amounts in debug logs
    def __str__(self):
        jid = self.journal_id
        acc = self.account.code
        acn = self.account.name
        return f"{jid} | {acc} {acn} | D:{self.debit_amount} C:{self.credit_amount}"

    @property
    def side(self):
        return "debit" if self.debit_amount > 0 else "credit"

    @property
    def amount(self):
        return self.debit_amount if self.debit_amount > 0 else self.credit_amount

    def clean(self):
        # Ensure no negative values sneak in
        # (redundant with CheckConstraint but useful at app-level)
        if self.debit_amount < 0 or self.credit_amount < 0:
            raise ValidationError("Debit and credit must be >= 0")
        if (self.debit_amount > 0) and (self.credit_amount > 0):
            raise ValidationError(
                "JournalLine should not have both debit and credit > 0"
            )
        if (self.debit_amount == 0) and (self.credit_amount == 0):
            raise ValidationError(
                "JournalLine requires a non-0 amount on either debit or credit"
            )

        # Company consistency
        # Every line must belong to same company as its parent journal
        if self.journal_id and self.company_id != self.journal.company_id:
            raise ValidationError(
                "JournalLine.company must equal JournalEntry.company"
            )
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError(
                "JournalLine.account must belong to the same company."
            )

    def save(self, *args, **kwargs):
        # Copy company from the parent journal when not set
        if not self.company_id and self.journal_id:
            self.company_id = self.journal.company_id
        if self.pk and JournalLine.objects.filter(pk=self.pk).exists():
            raise ValidationError(
                "Cannot modify JournalLine: ledger lines are immutable."
            )
        self.full_clean(validate_unique=False)
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            "Cannot delete JournalLine: post a reversing entry instead."
        )

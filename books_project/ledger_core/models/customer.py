from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models

from ..managers import TenantManager
from .account import Account
from .company import Company


def default_reminder_offsets():
    return settings.LEDGER["DEFAULT_REMINDER_OFFSETS"]


def default_reminder_interval():
    return settings.LEDGER["DEFAULT_REMINDER_INTERVAL_DAYS"]


# ---------- Customer ----------
# Represents client who receives invoices (AR side)
class Customer(models.Model):
    # Multi-tenant: every customer belongs to a single company.
    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    # The customer’s legal or trade name
    name = models.CharField(max_length=200)

    # Reminders are only sent when an address is on file
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=50, blank=True, default="")
    address = models.TextField(blank=True, default="")

    # Standard credit terms, e.g. "Net 30"
    payment_terms = models.CharField(max_length=50, default="Net 30")
    """ Example: "Net 15" → invoice due 15 days after issue. """

    # FK to the Accounts Receivable account in Chart of Accounts
    """ If set: invoices for this customer book AR to that account
        instead of the company's configured AR control account.
    """
    default_ar_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="customers_default_ar",
        help_text="Default AR account used for this customer",
    )

    # Payment reminder schedule
    reminders_enabled = models.BooleanField(default=True)
    # Comma-separated day offsets past the due date, e.g. "0,7,15,30"
    reminder_offsets = models.CharField(
        max_length=100, default=default_reminder_offsets
    )
    # Days between repeats once every offset has fired
    reminder_interval_days = models.PositiveIntegerField(
        default=default_reminder_interval
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "name"]),
        ]
        # Enforce uniqueness per tenant
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"], name="uq_company_customer_name"
            ),
        ]
        ordering = ("company", "name")

    def __str__(self):
        return self.name

    @property
    def offsets(self):
        """Parsed reminder offsets, ascending and de-duplicated."""
        values = set()
        for part in (self.reminder_offsets or "").split(","):
            part = part.strip()
            if part:
                values.add(int(part))
        return sorted(values)

    def clean(self):
        ar = self.default_ar_account
        # Ensure AR account belongs to the same company
        if ar and ar.company_id != self.company_id:
            raise ValidationError(
                "Default AR account & customer must belong to the same company"
            )
        # Only control accounts can be set as default AR
        if ar and not ar.is_control_account:
            raise ValidationError(
                "Default AR account must be a control account")

        try:
            offsets = self.offsets
        except ValueError:
            raise ValidationError(
                {"reminder_offsets": "Use comma-separated whole numbers, e.g. 0,7,15,30"}
            )
        if any(o < 0 for o in offsets):
            raise ValidationError(
                {"reminder_offsets": "Reminder offsets cannot be negative"}
            )
        return super().clean()

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

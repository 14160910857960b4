from decimal import Decimal
from django.db import models
from ..managers import TenantManager
from .company import Company
from .customer import Customer

REMINDER_LOG_STATUS = [
    ("sent", "Sent"),
    ("failed", "Failed"),
]


class ReminderRecord(models.Model):
    """
    Per-customer reminder state.
    fired_offsets holds the schedule offsets (days past due) already
    covered for the current overdue episode; it is cleared when the
    customer's outstanding balance returns to zero. A run claims the
    offset here before it sends, and clears the claim afterwards.
    """
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    customer = models.OneToOneField(
        Customer, on_delete=models.CASCADE, related_name="reminder_record"
    )
    last_sent_at = models.DateTimeField(null=True, blank=True)
    fired_offsets = models.JSONField(default=list, blank=True)
    # Set while a run is sending; other runs leave the customer alone
    claimed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["company", "customer"], name="uq_reminder_company_customer"
            ),
        ]

    def __str__(self):
        return f"{self.customer} fired={self.fired_offsets} last={self.last_sent_at}"

    def reset(self):
        self.fired_offsets = []
        self.last_sent_at = None
        self.save(update_fields=["fired_offsets", "last_sent_at", "updated_at"])


class ReminderLog(models.Model):  # One row per send attempt
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    customer = models.ForeignKey(
        Customer, on_delete=models.CASCADE, related_name="reminder_logs"
    )
    # Schedule offset that triggered the send (None for manual/recurrence)
    offset = models.IntegerField(null=True, blank=True)
    status = models.CharField(max_length=10, choices=REMINDER_LOG_STATUS)
    recipient = models.EmailField(blank=True, default="")
    balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    days_overdue = models.IntegerField(default=0)
    error = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["company", "customer", "created_at"])]
        ordering = ("-created_at",)

    def __str__(self):
        return f"{self.customer} {self.status} @ {self.created_at:%Y-%m-%d}"

from django.db import models
from ..managers import TenantManager
from .company import Company


# ---------- Audit / Event log ----------
class AuditLog(
    models.Model
):  # Gives accountability and traceability across whole system
    # Nullable because some actions might not belong to a specific company
    company = models.ForeignKey(
        Company,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    # Who performed the action: a user name, or e.g. "celery" / "import"
    actor = models.CharField(max_length=150, blank=True, default="")
    # Common choices: post, reverse, cancel, apply_payment, import, send_reminder
    action = models.CharField(max_length=50)
    # What kind of object was affected (e.g., "Invoice", "JournalEntry")
    object_type = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100)
    # Event details in JSON format
    changes = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "created_at"]),
            models.Index(fields=["company", "object_type", "object_id"]),
        ]

    def __str__(self):
        return f"[{self.created_at:%Y-%m-%d %H:%M}] {self.actor or '-'} {self.action} {self.object_type}({self.object_id})"

from django.db import models

from ..managers import TenantManager
from .company import Company


# ---------- Chart of Accounts ----------
class AccountCategory(models.Model):
    """
    Reporting group for accounts (e.g. "Rent", "Utilities").
    The P&L and expense category report roll account totals up
    to these names.
    """
    # each company has its own set of categories (multi-tenant safe)
    company = models.ForeignKey(
        Company, on_delete=models.CASCADE
    )
    name = models.CharField(max_length=100)
    # Optional free text shown alongside the report heading
    description = models.CharField(max_length=255, blank=True, default="")

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        # Category names repeat across companies
        # but must be unique within one
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"],
                name="uq_company_accountcategory_name"
            ),
        ]
        ordering = ("company", "name")
        verbose_name_plural = "account categories"

    def __str__(self):
        return f"{self.company.slug} - {self.name}"  # "acme - Rent"

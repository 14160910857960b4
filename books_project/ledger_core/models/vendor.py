from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .company import Company


class Vendor(models.Model):  # Mirrors Customer but for Accounts Payable (AP)

    # Multi-tenant
    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True, default="")
    payment_terms = models.CharField(max_length=50, default="Net 30")

    # Bills for this vendor book AP to this account when set
    default_ap_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="vendors_default_ap",
        help_text="Default AP account used for this vendor",
    )
    # Suggested expense account when categorizing bank rows
    default_expense_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="vendors_default_expense",
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"], name="uq_company_vendor_name"
            ),
        ]
        ordering = ("company", "name")

    def __str__(self):
        return self.name

    def clean(self):
        for acct in (self.default_ap_account, self.default_expense_account):
            if acct and acct.company_id != self.company_id:
                raise ValidationError(
                    "Vendor accounts must belong to the same company"
                )
        if self.default_ap_account and not self.default_ap_account.is_control_account:
            raise ValidationError("Default AP account must be a control account")
        if self.default_expense_account and self.default_expense_account.ac_type != "expense":
            raise ValidationError("Default expense account must be an expense account")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

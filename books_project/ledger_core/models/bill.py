from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .company import Company
from .invoice import DOCUMENT_STATUS_CHOICES, OPEN_STATUSES
from .journal import JournalEntry
from .vendor import Vendor


# ---------- Bills ----------
# Vendor bill (Accounts Payable document)
class Bill(models.Model):
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    vendor = models.ForeignKey(
        Vendor,
        # prevent deleting vendor who has a bill
        on_delete=models.PROTECT,
        related_name="bills",
    )
    # Vendor’s bill/invoice number (e.g. "INV-4567")
    bill_number = models.CharField(max_length=64)
    issue_date = models.DateField()  # bill date
    # when payment is expected
    due_date = models.DateField(null=True, blank=True)

    status = models.CharField(
        max_length=10, choices=DOCUMENT_STATUS_CHOICES, default="pending"
    )

    amount = models.DecimalField(max_digits=18, decimal_places=2)
    # Recoverable sales tax
    tax_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    paid_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # Expense GL account debited on issue
    expense_account = models.ForeignKey(
        Account,
        on_delete=models.PROTECT,
        related_name="+",
    )
    description = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "bill_number"]),
            models.Index(fields=["company", "vendor"]),
        ]
        constraints = [
            # Within one company, each bill number must be unique
            models.UniqueConstraint(
                fields=["company", "bill_number"],
                name="uq_bill_company_number"
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gte=0) &
                models.Q(tax_amount__gte=0) &
                models.Q(paid_amount__gte=0),
                name="bill_non_negative_amounts",
            ),
        ]

    def __str__(self):
        return f"Bill: {self.bill_number}"

    @property
    def total(self):
        return self.amount + self.tax_amount

    @property
    def outstanding_amount(self):
        return max(self.total - self.paid_amount, Decimal("0.00"))

    @property
    def is_open(self):
        return self.status in OPEN_STATUSES

    @property
    def is_recognized(self):
        return JournalEntry.objects.filter(
            company_id=self.company_id,
            source_type="bill",
            source_id=self.pk,
            reversed_by__isnull=True,
        ).exists()

    def clean(self):
        if self.vendor_id and self.vendor.company_id != self.company_id:
            raise ValidationError("Vendor must belong to the same company.")
        if self.expense_account_id:
            if self.expense_account.company_id != self.company_id:
                raise ValidationError(
                    "Expense account must belong to the same company.")
            if self.expense_account.ac_type not in ("expense", "asset"):
                raise ValidationError(
                    "Bill must debit an expense or asset account.")
        if self.paid_amount > self.total:
            raise ValidationError("Paid amount cannot exceed bill total")

        if self.pk:
            orig = Bill.objects.get(pk=self.pk)
            if orig.status == "cancelled" or orig.paid_amount > 0 or orig.is_recognized:
                changed_fields = [
                    f for f in ("amount", "tax_amount", "vendor_id", "expense_account_id")
                    if getattr(orig, f) != getattr(self, f)
                ]
                if changed_fields:
                    raise ValidationError(
                        f"Cannot modify {changed_fields} on an issued or cancelled bill."
                    )

    def save(self, *args, **kwargs):
        if not self.due_date and self.issue_date and self.vendor_id:
            from ..services.aging import calculate_due_date

            self.due_date = calculate_due_date(
                self.issue_date, self.vendor.payment_terms
            )
        self.full_clean()
        super().save(*args, **kwargs)


class BankTransactionBill(
    models.Model
):  # Bridge table for applying bank transactions to bills (AP settlements)
    # Same idea as invoices, but for vendor payments
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    bank_transaction = models.ForeignKey(
        "BankTransaction", on_delete=models.PROTECT)
    bill = models.ForeignKey(
        Bill, on_delete=models.PROTECT, related_name="payments")
    # Supports partial payments
    applied_amount = models.DecimalField(max_digits=18, decimal_places=2)
    applied_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "bank_transaction"]),
            models.Index(fields=["company", "bill"]),
        ]
        constraints = [
            # Prevent duplicate application
            # of the same bank transaction to the same bill
            models.UniqueConstraint(
                fields=["bank_transaction", "bill"], name="unique_bank_tx_bill"
            ),
            models.CheckConstraint(
                condition=models.Q(applied_amount__gt=0),
                name="bt_bill_positive_amount",
            ),
        ]

    def __str__(self):
        return f"BT: {self.bank_transaction_id} → Bill: {self.bill.bill_number} Amt: ({self.applied_amount})"

    def clean(self):
        if self.applied_amount <= 0:
            raise ValidationError("Applied amount must be positive")

        # cannot apply more than outstanding
        if not self.pk and self.applied_amount > self.bill.outstanding_amount:
            raise ValidationError(
                "Applied amount cannot exceed bill outstanding")

        bt = self.bank_transaction
        if bt.company_id != self.company_id:
            raise ValidationError(
                "Bank transaction must belong to the same company.")
        if self.bill.company_id != self.company_id:
            raise ValidationError("Bill must belong to the same company.")
        # Vendor payments are withdrawals
        if bt.amount >= 0:
            raise ValidationError(
                "Only withdrawals can be applied to bills.")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .company import Company
from .customer import Customer
from .journal import JournalEntry

# Shared by Invoice and Bill
DOCUMENT_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("paid", "Paid"),
    ("overdue", "Overdue"),
    ("cancelled", "Cancelled"),
]

# Statuses that still count towards the outstanding balance
OPEN_STATUSES = ("pending", "overdue")


class Invoice(models.Model):  # Represents a customer invoice

    # Invoice belongs to one company (multi-tenant)
    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    customer = models.ForeignKey(
        Customer,
        # prevent deleting customer who has an invoice
        on_delete=models.PROTECT,
        related_name="invoices",
    )

    # human-readable (e.g. "INV-2025-001")
    invoice_number = models.CharField(max_length=64)
    issue_date = models.DateField()
    # payment deadline, derived from the customer's payment terms when blank
    due_date = models.DateField(null=True, blank=True)

    status = models.CharField(
        max_length=10, choices=DOCUMENT_STATUS_CHOICES, default="pending"
    )
    """ Workflow:
        pending = issued, not yet paid.
        overdue = pending past its due date.
        paid = fully settled.
        cancelled = recognition entry reversed. """

    # Net amount before tax
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    # Flat sales tax charged on top
    tax_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # Sum of payments applied so far
    paid_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # Revenue GL account credited on issue
    revenue_account = models.ForeignKey(
        Account,
        on_delete=models.PROTECT,
        related_name="+",
        help_text="Sales / revenue account for this invoice",
    )
    description = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        # Optimize for fast lookups by invoice number or customer
        indexes = [
            models.Index(fields=["company", "invoice_number"]),
            models.Index(fields=["company", "customer"]),
            models.Index(fields=["company", "status"]),
        ]
        constraints = [
            # Within one company, each invoice number must be unique
            models.UniqueConstraint(
                fields=["company", "invoice_number"],
                name="uq_invoice_company_number"
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gte=0) &
                models.Q(tax_amount__gte=0) &
                models.Q(paid_amount__gte=0),
                name="inv_non_negative_amounts",
            ),
        ]

    def __str__(self):
        return f"Inv {self.invoice_number}"

    @property
    def total(self):
        return self.amount + self.tax_amount

    @property
    def outstanding_amount(self):
        # if payments overshoot for any reason, cap at 0, not negative
        return max(self.total - self.paid_amount, Decimal("0.00"))

    @property
    def is_open(self):
        return self.status in OPEN_STATUSES

    @property
    def is_recognized(self):
        """True while an unreversed entry recognizes this invoice."""
        return JournalEntry.objects.filter(
            company_id=self.company_id,
            source_type="invoice",
            source_id=self.pk,
            reversed_by__isnull=True,
        ).exists()

    def clean(self):
        # Tenant safety
        if self.customer_id and self.customer.company_id != self.company_id:
            raise ValidationError("Customer must belong to the same company.")
        if self.revenue_account_id:
            if self.revenue_account.company_id != self.company_id:
                raise ValidationError(
                    "Revenue account must belong to the same company.")
            if self.revenue_account.ac_type != "revenue":
                raise ValidationError(
                    "Invoice must credit a revenue account.")
        if self.paid_amount > self.total:
            raise ValidationError("Paid amount cannot exceed invoice total")
        if self.due_date and self.due_date < self.issue_date:
            raise ValidationError("Due date cannot be before issue date")

        # Amounts are frozen once the invoice is in the ledger
        if self.pk:
            orig = Invoice.objects.get(pk=self.pk)
            if orig.status == "cancelled" or orig.paid_amount > 0 or orig.is_recognized:
                changed_fields = [
                    f for f in ("amount", "tax_amount", "customer_id", "revenue_account_id")
                    if getattr(orig, f) != getattr(self, f)
                ]
                if changed_fields:
                    raise ValidationError(
                        f"Cannot modify {changed_fields} on an issued or cancelled invoice."
                    )

    def save(self, *args, **kwargs):
        if not self.due_date and self.issue_date and self.customer_id:
            # lazy import to avoid circular import at module load time
            from ..services.aging import calculate_due_date

            self.due_date = calculate_due_date(
                self.issue_date, self.customer.payment_terms
            )
        self.full_clean()  # will trigger clean()
        super().save(*args, **kwargs)


class BankTransactionInvoice(
    models.Model
):  # Bridge table for applying bank transactions to invoices (AR settlements)
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # Many-to-many relationship between BankTransaction & Invoice
    bank_transaction = models.ForeignKey(
        "BankTransaction", on_delete=models.PROTECT)
    invoice = models.ForeignKey(
        Invoice, on_delete=models.PROTECT, related_name="payments")
    # Allow partial application (e.g. $100 payment applied to a $250 invoice)
    applied_amount = models.DecimalField(max_digits=18, decimal_places=2)
    applied_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "bank_transaction"]),
            models.Index(fields=["company", "invoice"]),
        ]
        constraints = [
            # Each bank transaction can be linked to the same invoice only once
            models.UniqueConstraint(
                fields=["bank_transaction", "invoice"],
                name="unique_bank_tx_invoice"
            ),
            models.CheckConstraint(
                condition=models.Q(applied_amount__gt=0),
                name="bt_inv_positive_amount",
            ),
        ]

    def __str__(self):
        return f"BT: {self.bank_transaction_id} → Inv: {self.invoice.invoice_number} Amt: ({self.applied_amount})"

    def clean(self):
        if self.applied_amount <= 0:
            raise ValidationError("Applied amount must be positive")

        # prevent “overpayment” situations where invoice would go negative
        if not self.pk and self.applied_amount > self.invoice.outstanding_amount:
            raise ValidationError(
                "Applied amount cannot exceed invoice outstanding")

        # Prevent cross-company contamination
        bt = self.bank_transaction
        if bt.company_id != self.company_id:
            raise ValidationError(
                "Bank transaction must belong to the same company.")
        if self.invoice.company_id != self.company_id:
            raise ValidationError("Invoice must belong to the same company.")
        # Customer payments are deposits
        if bt.amount <= 0:
            raise ValidationError(
                "Only deposits can be applied to invoices.")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .company import Company
from .customer import Customer
from .vendor import Vendor

BT_STATUS_CHOICES = [
    ("unapplied", "Unapplied"),
    ("partially_applied", "Partially applied"),
    ("fully_applied", "Fully applied"),
    ("posted", "Posted"),  # categorized and posted to the ledger
]

IMPORT_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("processed", "Processed"),
    ("failed", "Failed"),
]


# ---------- Banking ----------


class BankAccount(models.Model):  # Represents bank account company maintains
    # Belongs to a Company (multi-tenant)
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    name = models.CharField(
        max_length=200
    )  # e.g. "Checking Account", "Savings Account"
    # Partial account number for display/security
    account_number_masked = models.CharField(
        max_length=50, blank=True, default="")
    # Asset account in the chart that mirrors this bank account
    ledger_account = models.ForeignKey(
        Account,
        on_delete=models.PROTECT,
        related_name="bank_accounts",
    )
    # Starting point for running balances
    opening_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    last_reconciled_at = models.DateField(
        null=True, blank=True
    )  # For reconciliation workflows

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        # A company cannot have two accounts with the same name
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"], name="uq_company_bankaccount_name"
            ),
        ]
        indexes = [models.Index(fields=["company", "name"])]

    def __str__(self):
        # Show name + masked number for clarity
        if self.account_number_masked:
            return f"{self.name} ({self.account_number_masked})"
        return self.name

    def clean(self):
        if self.ledger_account_id:
            if self.ledger_account.company_id != self.company_id:
                raise ValidationError(
                    "Ledger account must belong to the same company.")
            if self.ledger_account.ac_type != "asset":
                raise ValidationError(
                    "Bank accounts must map to an asset account.")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    @property
    def current_balance(self):
        """Running balance after the last imported row."""
        last = (
            self.transactions.order_by("-transaction_date", "-sequence")
            .values_list("running_balance", flat=True)
            .first()
        )
        return self.opening_balance if last is None else last


class BankFeedImport(models.Model):  # One uploaded statement file
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    bank_account = models.ForeignKey(
        BankAccount, on_delete=models.CASCADE, related_name="imports")
    file_name = models.CharField(max_length=255, blank=True, default="")
    status = models.CharField(
        max_length=10, choices=IMPORT_STATUS_CHOICES, default="pending"
    )
    total_rows = models.PositiveIntegerField(default=0)
    parsed_rows = models.PositiveIntegerField(default=0)
    skipped_rows = models.PositiveIntegerField(default=0)
    # Row-level problems, e.g. ["Row 3: invalid amount 'abc'"]
    errors = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["company", "bank_account"])]
        ordering = ("-created_at",)

    def __str__(self):
        return f"{self.file_name or 'import'} [{self.status}]"


class BankTransaction(
    models.Model
):  # Represents single inflow/outflow in a bank account
    # Belongs to both a Company and a specific BankAccount
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # prevent BankAccount deletion if transactions exist
    bank_account = models.ForeignKey(
        BankAccount, on_delete=models.PROTECT, related_name="transactions")
    feed_import = models.ForeignKey(
        BankFeedImport,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="rows",
    )
    transaction_date = models.DateField()  # when it cleared
    description = models.TextField()
    # amount: positive = inflow (deposit), negative = outflow (payment)
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    reference = models.CharField(max_length=200, blank=True, default="")
    # Insertion order within the bank account (tie-break for same-day rows)
    sequence = models.PositiveIntegerField(default=0)
    # Bank balance after this row
    running_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    status = models.CharField(
        max_length=20, choices=BT_STATUS_CHOICES, default="unapplied"
    )

    # Categorization (set by the user)
    category_account = models.ForeignKey(
        Account, null=True, blank=True, on_delete=models.PROTECT,
        related_name="+",
    )
    customer = models.ForeignKey(
        Customer, null=True, blank=True, on_delete=models.SET_NULL,
        related_name="+",
    )
    vendor = models.ForeignKey(
        Vendor, null=True, blank=True, on_delete=models.SET_NULL,
        related_name="+",
    )
    # Categorization suggested from the description at import time
    suggested_account = models.ForeignKey(
        Account, null=True, blank=True, on_delete=models.SET_NULL,
        related_name="+",
    )
    suggested_customer = models.ForeignKey(
        Customer, null=True, blank=True, on_delete=models.SET_NULL,
        related_name="+",
    )
    suggested_vendor = models.ForeignKey(
        Vendor, null=True, blank=True, on_delete=models.SET_NULL,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        # Optimizes queries for reconciliation
        indexes = [
            models.Index(fields=["company", "bank_account"]),
            models.Index(fields=["bank_account", "transaction_date", "sequence"]),
        ]
        ordering = ("bank_account", "transaction_date", "sequence")

    @property
    def is_inflow(self):
        return self.amount > 0

    def clean(self):  # auto-runs when you call full_clean() before saving
        # Tenancy check
        if self.bank_account.company_id != self.company_id:
            raise ValidationError(
                "Bank account must belong to the same company.")
        for related in (self.category_account, self.customer, self.vendor):
            if related is not None and related.company_id != self.company_id:
                raise ValidationError(
                    "Categorization must belong to the same company.")
        if self.amount == 0:
            raise ValidationError("Bank transaction amount cannot be zero")

        # Amount and date are what the bank reported; never edited
        if self.pk:
            orig = BankTransaction.objects.get(pk=self.pk)
            if (
                orig.amount != self.amount
                or orig.transaction_date != self.transaction_date
                or orig.bank_account_id != self.bank_account_id
            ):
                raise ValidationError(
                    "Bank transaction amount and date cannot be changed.")

            # Applied payments can never exceed the row's absolute amount
            applied = self.applied_total()
            if applied > abs(self.amount):
                raise ValidationError(
                    "Applied payments exceed bank transaction amount")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.bank_account.name} - {self.transaction_date} - {self.amount} ({self.status})"

    def applied_total(self):
        """How much of this row has been applied to invoices and bills"""
        from .bill import BankTransactionBill
        from .invoice import BankTransactionInvoice

        total = Decimal("0.00")
        for model in (BankTransactionInvoice, BankTransactionBill):
            total += model.objects.filter(bank_transaction=self).aggregate(
                total=models.Sum("applied_amount")
            )["total"] or Decimal("0.00")
        return total

    def transition_to(self, new_status):
        # Current state vs. allowed next states
        allowed = {
            "unapplied": ["partially_applied", "fully_applied", "posted"],
            "partially_applied": ["partially_applied", "fully_applied", "unapplied"],
            # Backwards moves only happen when a payment or posting is reversed
            "fully_applied": ["partially_applied", "unapplied"],
            "posted": ["unapplied"],
        }
        if new_status not in allowed.get(self.status, []):
            # If requested new_status isn’t allowed → block it
            raise ValidationError(
                f"Cannot go from {self.status} to {new_status}")

        applied = self.applied_total()
        amount = abs(self.amount)

        if new_status == "partially_applied":
            if applied <= 0 or applied >= amount:
                raise ValidationError(
                    f"Invalid amount: applied={applied}, amount={amount}"
                )
        if new_status == "fully_applied":
            if applied != amount:
                raise ValidationError(
                    f"Invalid amount: applied={applied}, amount={amount}"
                )
        if new_status == "unapplied" and applied != 0:
            raise ValidationError(
                f"Cannot unapply a row with {applied} still applied")

        self.status = new_status
        self.save(update_fields=["status"])
        return self

from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .ac_category import AccountCategory
from .company import Company

# Choice Lists
AC_TYPES = [
    # Used in Account model to classify general ledger accounts
    ("asset", "Asset"),
    ("liability", "Liability"),
    ("equity", "Equity"),
    ("revenue", "Revenue"),
    ("expense", "Expense"),
]

# Define whether the account normally increases
# on the debit side or credit side
NORMAL_BALANCE = [
    ("debit", "Debit"),
    ("credit", "Credit"),
]

# Assets/Expenses → Debit, Liabilities/Equity/Revenue → Credit
DEBIT_NORMAL_TYPES = ("asset", "expense")

# Balance sheet vs P&L split
BALANCE_SHEET_TYPES = ("asset", "liability", "equity")
INCOME_STATEMENT_TYPES = ("revenue", "expense")


def normal_balance_for(ac_type):
    return "debit" if ac_type in DEBIT_NORMAL_TYPES else "credit"


class Account(models.Model):
    """
    Actual ledger account entry in Chart of Accounts.
    - code should be unique per company
    - ac_type: determines reporting -BS vs P&L
    - normal_balance: derived from ac_type, used to sign report balances
    """

    company = models.ForeignKey(  # Each account belongs to one company
        Company,  # All reports must filter by company_id to prevent data leaks
        on_delete=models.CASCADE,
    )
    # Every account has a code
    # which lets you sort/group accounts consistently in reports.
    code = models.CharField(
        max_length=32
    )
    name = models.CharField(
        max_length=200
    )  # Human-readable name → "Cash", "Accounts Payable".

    # Classify account into one of the 5 basic accounting types
    ac_type = models.CharField(
        max_length=10,
        choices=AC_TYPES,
    )

    # Define whether the account normally carries a debit or credit balance
    normal_balance = models.CharField(
        max_length=6,
        choices=NORMAL_BALANCE,
        editable=False,
    )
    # Optional hierarchy:
    # (e.g. 1000 Cash, 1001 Petty Cash)
    parent = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        # you can’t delete a parent if children exist
    )

    # Groups an account under a reporting category (optional)
    # E.g., "Rent Expense" could belong to "Occupancy".
    category = models.ForeignKey(
        AccountCategory,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    # Expense accounts flagged here are reported as cost of sales
    # (above the gross profit line) in the P&L
    is_cost_of_sales = models.BooleanField(default=False)

    # “soft deactivate” accounts (hide in UI, stop new postings)
    # without deleting history
    is_active = models.BooleanField(
        default=True
    )
    created_at = models.DateTimeField(
        auto_now_add=True
    )  # Track when the account was created.
    is_control_account = models.BooleanField(
        default=False
    )  # marker for accounts that must reconcile with subledgers (AR/AP)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [  # Optimize queries
            # For reports grouped by ac_type
            # (Trial Balance, P&L, Balance Sheet)
            models.Index(
                fields=["company", "ac_type"]
            ),
            # For looking up accounts by code
            models.Index(fields=["company", "code"]),
        ]

        """ Each company defines its own chart of accounts.
               Codes repeat across companies but must be unique within one. """
        constraints = [
            models.UniqueConstraint(
                fields=["company", "code"], name="uq_company_account_code"
            )
        ]
        ordering = ("company", "code")

    def __str__(self):
        return f"{self.code} – {self.name}"
        # Example: "1000 – Cash".

    @property
    def is_debit_normal(self):
        return self.normal_balance == "debit"

    def signed_balance(self, debit, credit):
        """Balance on the account's normal side."""
        if self.is_debit_normal:
            return debit - credit
        return credit - debit

    def clean(self):
        """Enforce company consistency (multi-tenancy)"""
        # Check if category belongs to same company
        if self.category_id and self.category.company_id != self.company_id:
            raise ValidationError(
                "AccountCategory must belong to the same company as Account."
            )

        # Check if parent account belongs to same company
        if self.parent_id and self.parent.company_id != self.company_id:
            raise ValidationError(
                "Parent & child accounts must belong to the same company"
            )

        if self.is_cost_of_sales and self.ac_type != "expense":
            raise ValidationError("Only expense accounts can be cost of sales.")

    def save(self, *args, **kwargs):
        """Enforce business immutability
        (can’t retype, recode or disable accounts used in journal lines)"""
        self.normal_balance = normal_balance_for(self.ac_type)
        self.full_clean()
        if not self.pk:
            # New object → just save (no need for checks)
            return super().save(*args, **kwargs)
        # Fetch the previous version of account from DB
        old = Account.objects.filter(pk=self.pk).first()
        if old is None:
            return super().save(*args, **kwargs)

        from .journal import JournalLine

        # check usage (referenced in transactions)
        if JournalLine.objects.filter(account_id=self.pk).exists():
            if old.code != self.code or old.ac_type != self.ac_type:
                raise ValidationError(
                    "Cannot change code or type of an account used in journal lines."
                )
            if old.company_id != self.company_id:
                raise ValidationError(
                    "Cannot move an account used in journal lines to another company."
                )
            # If account was active before, but now being set to inactive
            if old.is_active and not self.is_active:
                raise ValidationError(
                    "Cannot disable an account that is used in journal lines."
                )
        return super().save(*args, **kwargs)

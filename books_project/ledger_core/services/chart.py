import logging

from django.conf import settings
from django.db import transaction

from ..exceptions import UnknownAccount
from ..models import Account, AccountCategory

logger = logging.getLogger(__name__)

# (code, name, type, category, flags)
DEFAULT_CHART = [
    # Assets
    ("1000", "Cash", "asset", "Current Assets", {}),
    ("1100", "Bank", "asset", "Current Assets", {}),
    ("1200", "Accounts Receivable", "asset", "Current Assets", {"is_control_account": True}),
    ("1500", "Inventory", "asset", "Current Assets", {}),
    ("1700", "Equipment", "asset", "Fixed Assets", {}),
    # Liabilities
    ("2000", "Accounts Payable", "liability", "Current Liabilities", {"is_control_account": True}),
    ("2100", "Accrued Expenses", "liability", "Current Liabilities", {}),
    ("2200", "Sales Tax Payable", "liability", "Current Liabilities", {}),
    # Equity
    ("3000", "Owner's Equity", "equity", "Equity", {}),
    ("3900", "Opening Balance Equity", "equity", "Equity", {}),
    # Revenue
    ("4000", "Sales Revenue", "revenue", "Sales", {}),
    ("4100", "Service Revenue", "revenue", "Services", {}),
    # Expenses
    ("5000", "Cost of Goods Sold", "expense", "Cost of Sales", {"is_cost_of_sales": True}),
    ("6000", "Office Supplies", "expense", "Office", {}),
    ("6100", "Rent Expense", "expense", "Rent", {}),
    ("6200", "Utilities Expense", "expense", "Utilities", {}),
    ("6300", "Travel Expense", "expense", "Travel", {}),
    ("6400", "Miscellaneous Expense", "expense", "Other", {}),
]

# Control account roles → LEDGER setting holding the account code
CONTROL_ROLES = {
    "ar": "AR_ACCOUNT_CODE",
    "ap": "AP_ACCOUNT_CODE",
    "sales_tax": "SALES_TAX_ACCOUNT_CODE",
    "opening_balance_equity": "OPENING_BALANCE_EQUITY_CODE",
}


@transaction.atomic
def initialize_chart_of_accounts(company):
    """
    Create the default chart for a company.
    Existing codes are left untouched, so calling twice is harmless.
    Returns the list of accounts created.
    """
    created = []
    for code, name, ac_type, category_name, flags in DEFAULT_CHART:
        if Account.objects.for_company(company).filter(code=code).exists():
            continue
        category, _ = AccountCategory.objects.get_or_create(
            company=company, name=category_name
        )
        acct = Account(
            company=company,
            code=code,
            name=name,
            ac_type=ac_type,
            category=category,
            **flags,
        )
        acct.save()
        created.append(acct)

    logger.info(
        "Initialized chart of accounts",
        extra={"company_id": company.pk, "accounts_created": len(created)},
    )
    return created


def get_control_account(company, role):
    """
    Resolve a control account ("ar", "ap", "sales_tax",
    "opening_balance_equity") by the code configured in settings.LEDGER.
    """
    setting = CONTROL_ROLES[role]
    code = settings.LEDGER[setting]
    acct = Account.objects.for_company(company).filter(code=code).first()
    if acct is None:
        raise UnknownAccount(
            f"No {role} account with code {code} in the chart of accounts"
        )
    return acct

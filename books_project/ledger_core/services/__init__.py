from .aging import (get_aging_report, get_customer_balance,
                    get_customers_with_balance, get_vendors_with_balance,
                    refresh_invoice_statuses)
from .bank_feed import (categorize_bank_row, import_bank_feed, parse_feed,
                        post_bank_row, recompute_running_balances,
                        suggest_categorization, validate_headers)
from .chart import get_control_account, initialize_chart_of_accounts
from .documents import (SourceDocument, cancel_bill, cancel_invoice,
                        issue_bill, issue_invoice, post_document,
                        post_opening_balance)
from .payment import (apply_bank_row_to_bill, apply_bank_row_to_invoice,
                      apply_bank_row_to_invoices)
from .posting import PostingLine, SourceRef, post_transaction, reverse_transaction
from .reminders import send_reminders
from .statements import (get_balance_sheet, get_customer_statement,
                         get_expense_category_report, get_general_ledger,
                         get_profit_and_loss, get_trial_balance)

__all__ = [
    "PostingLine",
    "SourceDocument",
    "SourceRef",
    "apply_bank_row_to_bill",
    "apply_bank_row_to_invoice",
    "apply_bank_row_to_invoices",
    "cancel_bill",
    "cancel_invoice",
    "categorize_bank_row",
    "get_aging_report",
    "get_balance_sheet",
    "get_control_account",
    "get_customer_balance",
    "get_customer_statement",
    "get_customers_with_balance",
    "get_expense_category_report",
    "get_general_ledger",
    "get_profit_and_loss",
    "get_trial_balance",
    "get_vendors_with_balance",
    "import_bank_feed",
    "initialize_chart_of_accounts",
    "issue_bill",
    "issue_invoice",
    "parse_feed",
    "post_bank_row",
    "post_document",
    "post_opening_balance",
    "post_transaction",
    "recompute_running_balances",
    "refresh_invoice_statuses",
    "reverse_transaction",
    "send_reminders",
    "suggest_categorization",
    "validate_headers",
]

"""
Financial statements.

Pure reads over JournalLine. Each statement is built from one grouped
aggregate query, so it reflects a single consistent snapshot of the
ledger without taking locks. The customer statement is the exception:
it reads invoices and their payments.

Date conventions:
- trial balance / balance sheet: cumulative from inception through
  `as_of` inclusive
- general ledger, P&L and customer statement: half-open range [start, end)
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from django.conf import settings
from django.db.models import Count, DecimalField, F, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from ..exceptions import CustomerNotFound
from ..models import (Account, BankTransactionInvoice, Customer, Invoice,
                      JournalLine)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# ----------------------------
# Report row types
# ----------------------------
@dataclass(frozen=True)
class TrialBalanceRow:
    account_id: int
    code: str
    name: str
    ac_type: str
    total_debit: Decimal
    total_credit: Decimal
    # Signed on the account's normal side
    balance: Decimal


@dataclass
class TrialBalance:
    as_of: Optional[date]
    rows: List[TrialBalanceRow]
    total_debit: Decimal
    total_credit: Decimal

    @property
    def is_balanced(self):
        return self.total_debit == self.total_credit


@dataclass(frozen=True)
class GeneralLedgerRow:
    date: date
    journal_id: int
    line_no: int
    account_code: str
    account_name: str
    description: str
    debit: Decimal
    credit: Decimal
    source_type: Optional[str]
    source_id: Optional[int]


@dataclass(frozen=True)
class StatementLine:
    name: str
    amount: Decimal


@dataclass
class ProfitAndLoss:
    start: date
    end: date
    revenue: List[StatementLine]
    cost_of_sales: List[StatementLine]
    expenses: List[StatementLine]
    total_revenue: Decimal
    total_cost: Decimal
    total_expenses: Decimal

    @property
    def gross_profit(self):
        return self.total_revenue - self.total_cost

    @property
    def net_income(self):
        return self.gross_profit - self.total_expenses


@dataclass
class BalanceSheet:
    as_of: date
    assets: List[StatementLine]
    liabilities: List[StatementLine]
    equity: List[StatementLine]
    total_assets: Decimal
    total_liabilities: Decimal
    total_equity: Decimal
    is_balanced: bool = field(default=True)

    @property
    def total_liabilities_and_equity(self):
        return self.total_liabilities + self.total_equity


@dataclass(frozen=True)
class ExpenseCategoryRow:
    category: str
    total: Decimal
    entry_count: int


# ----------------------------
# Helpers
# ----------------------------
def _money_sum(field_name, condition):
    return Coalesce(
        Sum(field_name, filter=condition),
        Value(ZERO),
        output_field=DecimalField(max_digits=18, decimal_places=2),
    )


def _accounts_with_totals(company_id, line_filter):
    """One grouped query: every account of the company with its line sums."""
    return (
        Account.objects.for_company(company_id)
        .select_related("category")
        .annotate(
            sum_debit=_money_sum("journalline__debit_amount", line_filter),
            sum_credit=_money_sum("journalline__credit_amount", line_filter),
            line_count=Count("journalline", filter=line_filter),
        )
        .order_by("code")
    )


def _grouping_name(acct):
    # Category name, or the account name when uncategorized
    return acct.category.name if acct.category_id else acct.name


def _group(accounts):
    grouped = OrderedDict()
    for acct in accounts:
        amount = acct.signed_balance(acct.sum_debit, acct.sum_credit)
        if amount == 0:
            continue
        key = _grouping_name(acct)
        grouped[key] = grouped.get(key, ZERO) + amount
    return [StatementLine(name, amount) for name, amount in grouped.items()]


def _total(lines):
    return sum((line.amount for line in lines), ZERO)


def _ytd_range(today=None):
    today = today or timezone.localdate()
    return date(today.year, 1, 1), today + timedelta(days=1)


# ----------------------------
# Statements
# ----------------------------
def get_trial_balance(company_id, as_of=None) -> TrialBalance:
    """
    Per-account debit/credit totals through `as_of` (inclusive).
    A mismatch between the column totals is a data integrity fault: it is
    flagged on the report and logged, never corrected.
    """
    company_id = getattr(company_id, "pk", company_id)
    line_filter = Q(journalline__journal__date__lte=as_of) if as_of else Q()

    rows = []
    total_debit = ZERO
    total_credit = ZERO
    for acct in _accounts_with_totals(company_id, line_filter):
        # Inactive accounts only show when they carry activity
        if not acct.is_active and not acct.line_count:
            continue
        rows.append(
            TrialBalanceRow(
                account_id=acct.pk,
                code=acct.code,
                name=acct.name,
                ac_type=acct.ac_type,
                total_debit=acct.sum_debit,
                total_credit=acct.sum_credit,
                balance=acct.signed_balance(acct.sum_debit, acct.sum_credit),
            )
        )
        total_debit += acct.sum_debit
        total_credit += acct.sum_credit

    tb = TrialBalance(as_of=as_of, rows=rows, total_debit=total_debit, total_credit=total_credit)
    if not tb.is_balanced:
        logger.error(
            "Trial balance out of balance",
            extra={
                "company_id": company_id,
                "as_of": str(as_of),
                "total_debit": str(total_debit),
                "total_credit": str(total_credit),
            },
        )
    return tb


def get_general_ledger(company_id, start=None, end=None) -> List[GeneralLedgerRow]:
    """Every ledger line in [start, end), ordered by date, entry, line."""
    company_id = getattr(company_id, "pk", company_id)
    qs = JournalLine.objects.for_company(company_id).select_related("journal", "account")
    if start:
        qs = qs.filter(journal__date__gte=start)
    if end:
        qs = qs.filter(journal__date__lt=end)
    qs = qs.order_by("journal__date", "journal_id", "line_no")

    return [
        GeneralLedgerRow(
            date=line.journal.date,
            journal_id=line.journal_id,
            line_no=line.line_no,
            account_code=line.account.code,
            account_name=line.account.name,
            description=line.description or line.journal.description,
            debit=line.debit_amount,
            credit=line.credit_amount,
            source_type=line.journal.source_type,
            source_id=line.journal.source_id,
        )
        for line in qs
    ]


def get_profit_and_loss(company_id, start=None, end=None) -> ProfitAndLoss:
    """
    Revenue, cost of sales and operating expenses for [start, end),
    year-to-date when no range is given.
    """
    company_id = getattr(company_id, "pk", company_id)
    default_start, default_end = _ytd_range()
    start = start or default_start
    end = end or default_end

    line_filter = Q(journalline__journal__date__gte=start) & Q(journalline__journal__date__lt=end)
    accounts = list(
        _accounts_with_totals(company_id, line_filter).filter(ac_type__in=("revenue", "expense"))
    )

    revenue = _group(a for a in accounts if a.ac_type == "revenue")
    cost_of_sales = _group(a for a in accounts if a.ac_type == "expense" and a.is_cost_of_sales)
    expenses = _group(a for a in accounts if a.ac_type == "expense" and not a.is_cost_of_sales)

    return ProfitAndLoss(
        start=start,
        end=end,
        revenue=revenue,
        cost_of_sales=cost_of_sales,
        expenses=expenses,
        total_revenue=_total(revenue),
        total_cost=_total(cost_of_sales),
        total_expenses=_total(expenses),
    )


def get_balance_sheet(company_id, as_of=None) -> BalanceSheet:
    """
    Assets, liabilities and equity from inception through `as_of` inclusive.

    Revenue and expense accounts are never closed into equity by postings,
    so cumulative net income is shown as a computed Retained Earnings line.
    """
    company_id = getattr(company_id, "pk", company_id)
    as_of = as_of or timezone.localdate()
    line_filter = Q(journalline__journal__date__lte=as_of)
    accounts = list(_accounts_with_totals(company_id, line_filter))

    def section(ac_type):
        lines = []
        for acct in accounts:
            if acct.ac_type != ac_type:
                continue
            balance = acct.signed_balance(acct.sum_debit, acct.sum_credit)
            if balance != 0:
                lines.append(StatementLine(f"{acct.code} {acct.name}", balance))
        return lines

    assets = section("asset")
    liabilities = section("liability")
    equity = section("equity")

    retained = ZERO
    for acct in accounts:
        if acct.ac_type == "revenue":
            retained += acct.sum_credit - acct.sum_debit
        elif acct.ac_type == "expense":
            retained -= acct.sum_debit - acct.sum_credit
    if retained != 0:
        equity.append(StatementLine("Retained Earnings", retained))

    total_assets = _total(assets)
    total_liabilities = _total(liabilities)
    total_equity = _total(equity)
    tolerance = settings.LEDGER["BALANCE_TOLERANCE"]
    balanced = abs(total_assets - (total_liabilities + total_equity)) <= tolerance

    if not balanced:
        logger.error(
            "Balance sheet does not balance",
            extra={
                "company_id": company_id,
                "as_of": str(as_of),
                "total_assets": str(total_assets),
                "total_liabilities_and_equity": str(total_liabilities + total_equity),
            },
        )

    return BalanceSheet(
        as_of=as_of,
        assets=assets,
        liabilities=liabilities,
        equity=equity,
        total_assets=total_assets,
        total_liabilities=total_liabilities,
        total_equity=total_equity,
        is_balanced=balanced,
    )


def get_expense_category_report(company_id, start=None, end=None) -> List[ExpenseCategoryRow]:
    """Expense totals per category for [start, end), largest first."""
    company_id = getattr(company_id, "pk", company_id)
    default_start, default_end = _ytd_range()
    start = start or default_start
    end = end or default_end

    grouped = (
        JournalLine.objects.for_company(company_id)
        .filter(account__ac_type="expense", journal__date__gte=start, journal__date__lt=end)
        .values("account__category__name", "account__name")
        .annotate(
            debit=Sum("debit_amount"),
            credit=Sum("credit_amount"),
            entries=Count("journal", distinct=True),
        )
    )

    totals = {}
    counts = {}
    for row in grouped:
        name = row["account__category__name"] or row["account__name"]
        totals[name] = totals.get(name, ZERO) + (row["debit"] or ZERO) - (row["credit"] or ZERO)
        counts[name] = counts.get(name, 0) + row["entries"]

    rows = [ExpenseCategoryRow(name, totals[name], counts[name]) for name in totals]
    rows.sort(key=lambda r: (-r.total, r.category))
    return rows


# ----------------------------
# Customer statement
# ----------------------------
@dataclass(frozen=True)
class CustomerStatementLine:
    date: date
    # invoice or payment
    kind: str
    reference: str
    description: str
    debit: Decimal
    credit: Decimal
    balance: Decimal


@dataclass
class CustomerStatement:
    customer_id: int
    customer_name: str
    start: Optional[date]
    end: Optional[date]
    opening_balance: Decimal
    lines: List[CustomerStatementLine]

    @property
    def total_debits(self):
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credits(self):
        return sum((line.credit for line in self.lines), ZERO)

    @property
    def closing_balance(self):
        return self.opening_balance + self.total_debits - self.total_credits


def get_customer_statement(company_id, customer_id, start=None, end=None) -> CustomerStatement:
    """
    Invoices and payments of one customer in [start, end).

    Read from the customer's documents rather than the ledger: what was
    billed before `start` less what was paid before it is carried in as
    the opening balance. Cancelled invoices are left out.
    """
    company_id = getattr(company_id, "pk", company_id)
    customer = Customer.objects.for_company(company_id).filter(pk=customer_id).first()
    if customer is None:
        raise CustomerNotFound(f"Customer {customer_id} not found for company {company_id}")

    invoices = (
        Invoice.objects.for_company(company_id)
        .filter(customer=customer)
        .exclude(status="cancelled")
    )
    payments = (
        BankTransactionInvoice.objects.for_company(company_id)
        .filter(invoice__customer=customer)
        .select_related("invoice", "bank_transaction")
    )

    opening = ZERO
    if start:
        billed = invoices.filter(issue_date__lt=start).aggregate(
            total=Sum(
                F("amount") + F("tax_amount"),
                output_field=DecimalField(max_digits=18, decimal_places=2),
            )
        )["total"] or ZERO
        paid = payments.filter(bank_transaction__transaction_date__lt=start).aggregate(
            total=Sum("applied_amount")
        )["total"] or ZERO
        opening = billed - paid
        invoices = invoices.filter(issue_date__gte=start)
        payments = payments.filter(bank_transaction__transaction_date__gte=start)
    if end:
        invoices = invoices.filter(issue_date__lt=end)
        payments = payments.filter(bank_transaction__transaction_date__lt=end)

    # (date, invoices before payments, reference, ...)
    entries = [
        (inv.issue_date, 0, inv.invoice_number, "invoice",
         f"Invoice {inv.invoice_number}", inv.total, ZERO)
        for inv in invoices
    ]
    entries += [
        (p.bank_transaction.transaction_date, 1, p.invoice.invoice_number, "payment",
         f"Payment for invoice {p.invoice.invoice_number}", ZERO, p.applied_amount)
        for p in payments
    ]
    entries.sort(key=lambda e: e[:3])

    lines = []
    running = opening
    for day, _, reference, kind, description, dr, cr in entries:
        running += dr - cr
        lines.append(CustomerStatementLine(day, kind, reference, description, dr, cr, running))

    return CustomerStatement(
        customer_id=customer.pk,
        customer_name=customer.name,
        start=start,
        end=end,
        opening_balance=opening,
        lines=lines,
    )

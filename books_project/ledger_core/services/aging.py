import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from django.conf import settings
from django.db.models import Count, DecimalField, ExpressionWrapper, F, Max, Min, Sum
from django.utils import timezone

from ..exceptions import CustomerNotFound
from ..models import Bill, Customer, Invoice, ReminderRecord, Vendor
from ..models.invoice import OPEN_STATUSES

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CURRENT = "Current"
TERMS_RE = re.compile(r"net\s*(\d+)", re.IGNORECASE)

# Reasons a customer is skipped outright (vs. simply not due yet)
SKIP_REASONS = ("zero_balance", "disabled", "no_email")


# ----------------------------
# Terms, due dates & buckets
# ----------------------------
def parse_payment_terms(terms) -> int:
    """ "Net 15" → 15, "Due on receipt" → 0, anything else → default days. """
    if terms:
        match = TERMS_RE.search(terms)
        if match:
            return int(match.group(1))
        if "receipt" in terms.lower():
            return 0
    return settings.LEDGER["DEFAULT_PAYMENT_TERMS_DAYS"]


def calculate_due_date(issue_date, terms) -> date:
    return issue_date + timedelta(days=parse_payment_terms(terms))


def days_overdue(due_date, today=None) -> int:
    today = today or timezone.localdate()
    if due_date is None:
        return 0
    return max(0, (today - due_date).days)


def aging_bucket(days: int) -> str:
    """Label of the aging bucket for a number of days overdue."""
    if days <= 0:
        return CURRENT
    for label, low, high in settings.LEDGER["AGING_BUCKETS"]:
        if days >= low and (high is None or days <= high):
            return label
    # Past the last configured bucket
    return settings.LEDGER["AGING_BUCKETS"][-1][0]


def customer_state(balance, days, is_due) -> str:
    """current, due (due today), or overdue_<bucket>."""
    if balance <= 0:
        return "current"
    if days > 0:
        return f"overdue_{aging_bucket(days)}"
    return "due" if is_due else "current"


# ----------------------------
# Reminder timing policy
# ----------------------------
@dataclass(frozen=True)
class ReminderDecision:
    eligible: bool
    # Schedule offset that fires (None for recurrence / manual sends)
    offset: Optional[int] = None
    reason: str = ""

    @property
    def skipped(self):
        return self.reason in SKIP_REASONS


def evaluate_reminder(*, balance, days, is_due, enabled, email, offsets,
                      fired_offsets, last_sent_at, interval_days, today,
                      manual=False) -> ReminderDecision:
    """
    Decide whether a customer gets a reminder today.

    Skip rules always apply. A manual send waives the timing rules.
    Otherwise the largest offset (days past due) that has been crossed but
    not yet fired wins; when the whole schedule has fired, the reminder
    repeats every `interval_days` after the last send.
    """
    if balance <= 0:
        return ReminderDecision(False, reason="zero_balance")
    if not enabled:
        return ReminderDecision(False, reason="disabled")
    if not email:
        return ReminderDecision(False, reason="no_email")
    if manual:
        return ReminderDecision(True, reason="manual")
    if not is_due:
        return ReminderDecision(False, reason="not_due")

    fired = set(fired_offsets or [])
    crossed = [o for o in offsets if o <= days and o not in fired]
    if crossed:
        return ReminderDecision(True, offset=max(crossed), reason="schedule")

    if offsets and fired.issuperset(offsets) and days > max(offsets):
        if last_sent_at is None:
            return ReminderDecision(True, reason="recurrence")
        since = (today - timezone.localdate(last_sent_at)).days
        if since >= interval_days:
            return ReminderDecision(True, reason="recurrence")

    return ReminderDecision(False, reason="not_eligible")


def offsets_fired_by(decision, offsets, fired_offsets):
    """Fired set after a send: the chosen offset and every smaller one."""
    fired = set(fired_offsets or [])
    if decision.offset is not None:
        fired.update(o for o in offsets if o <= decision.offset)
    return sorted(fired)


# ----------------------------
# Customer balances
# ----------------------------
@dataclass
class CustomerBalance:
    customer: Customer
    balance: Decimal
    days_overdue: int
    invoice_count: int
    last_invoice_date: Optional[date]
    oldest_due_date: Optional[date]
    bucket: str
    state: str
    reminders_enabled: bool
    reminder_offsets: List[int]
    fired_offsets: List[int] = field(default_factory=list)
    last_reminder_sent_at: Optional[object] = None
    decision: Optional[ReminderDecision] = None

    @property
    def eligible(self):
        return bool(self.decision and self.decision.eligible)

    @property
    def skip_reason(self):
        if self.decision and self.decision.skipped:
            return self.decision.reason
        return None


def _outstanding_expr():
    return ExpressionWrapper(
        F("amount") + F("tax_amount") - F("paid_amount"),
        output_field=DecimalField(max_digits=18, decimal_places=2),
    )


def open_balances(company_id, customer_ids=None):
    """One grouped query: outstanding balance per customer over open invoices."""
    qs = Invoice.objects.for_company(company_id).filter(status__in=OPEN_STATUSES)
    if customer_ids is not None:
        qs = qs.filter(customer_id__in=customer_ids)
    rows = (
        qs.values("customer_id")
        .annotate(
            balance=Sum(_outstanding_expr()),
            invoice_count=Count("id"),
            last_invoice_date=Max("issue_date"),
            oldest_due_date=Min("due_date"),
        )
    )
    return {row["customer_id"]: row for row in rows}


def build_customer_balance(customer, agg, record, today, manual=False) -> CustomerBalance:
    agg = agg or {}
    balance = agg.get("balance") or ZERO
    oldest_due = agg.get("oldest_due_date")
    days = days_overdue(oldest_due, today)
    is_due = oldest_due is not None and oldest_due <= today
    fired = list(record.fired_offsets) if record else []
    last_sent = record.last_sent_at if record else None
    offsets = customer.offsets

    decision = evaluate_reminder(
        balance=balance,
        days=days,
        is_due=is_due,
        enabled=customer.reminders_enabled,
        email=customer.email,
        offsets=offsets,
        fired_offsets=fired,
        last_sent_at=last_sent,
        interval_days=customer.reminder_interval_days,
        today=today,
        manual=manual,
    )
    return CustomerBalance(
        customer=customer,
        balance=balance,
        days_overdue=days,
        invoice_count=agg.get("invoice_count") or 0,
        last_invoice_date=agg.get("last_invoice_date"),
        oldest_due_date=oldest_due,
        bucket=aging_bucket(days),
        state=customer_state(balance, days, is_due),
        reminders_enabled=customer.reminders_enabled,
        reminder_offsets=offsets,
        fired_offsets=fired,
        last_reminder_sent_at=last_sent,
        decision=decision,
    )


def reset_settled_reminders(company_id, balances):
    """Clear reminder state for customers whose balance is back to zero."""
    reset = 0
    records = ReminderRecord.objects.for_company(company_id).exclude(customer_id__in=[
        cid for cid, row in balances.items() if (row["balance"] or ZERO) > 0
    ])
    for record in records:
        if record.fired_offsets or record.last_sent_at:
            record.reset()
            reset += 1
    if reset:
        logger.info(
            "Reset reminder schedules for settled customers",
            extra={"company_id": company_id, "count": reset},
        )
    return reset


def get_customers_with_balance(company_id, today=None) -> List[CustomerBalance]:
    """Customers with an outstanding balance, most overdue first."""
    company_id = getattr(company_id, "pk", company_id)
    today = today or timezone.localdate()
    balances = open_balances(company_id)
    reset_settled_reminders(company_id, balances)

    owing = [cid for cid, row in balances.items() if (row["balance"] or ZERO) > 0]
    customers = Customer.objects.for_company(company_id).in_bulk(owing)
    records = {
        r.customer_id: r
        for r in ReminderRecord.objects.for_company(company_id).filter(customer_id__in=owing)
    }

    result = [
        build_customer_balance(customers[cid], balances[cid], records.get(cid), today)
        for cid in owing
        if cid in customers
    ]
    result.sort(key=lambda cb: (-cb.days_overdue, -cb.balance, cb.customer.name))
    return result


def get_customer_balance(company_id, customer_id, today=None) -> CustomerBalance:
    """Aging position and reminder eligibility for one customer."""
    company_id = getattr(company_id, "pk", company_id)
    today = today or timezone.localdate()
    customer = Customer.objects.for_company(company_id).filter(pk=customer_id).first()
    if customer is None:
        raise CustomerNotFound(f"Customer {customer_id} not found for company {company_id}")
    record = ReminderRecord.objects.for_company(company_id).filter(customer=customer).first()
    agg = open_balances(company_id, [customer.pk]).get(customer.pk)
    return build_customer_balance(customer, agg, record, today)


def refresh_invoice_statuses(company_id, today=None) -> int:
    """Flip pending invoices past their due date to overdue."""
    company_id = getattr(company_id, "pk", company_id)
    today = today or timezone.localdate()
    updated = (
        Invoice.objects.for_company(company_id)
        .filter(status="pending", due_date__lt=today)
        .update(status="overdue")
    )
    if updated:
        logger.info(
            "Marked invoices overdue",
            extra={"company_id": company_id, "count": updated, "today": str(today)},
        )
    return updated


@dataclass
class AgingReport:
    today: date
    buckets: "OrderedDict[str, Decimal]"
    total: Decimal


def get_aging_report(company_id, today=None) -> AgingReport:
    """Outstanding receivables per aging bucket, by invoice due date."""
    company_id = getattr(company_id, "pk", company_id)
    today = today or timezone.localdate()
    buckets = OrderedDict([(CURRENT, ZERO)])
    for label, _, _ in settings.LEDGER["AGING_BUCKETS"]:
        buckets[label] = ZERO

    rows = (
        Invoice.objects.for_company(company_id)
        .filter(status__in=OPEN_STATUSES)
        .annotate(outstanding=_outstanding_expr())
        .values_list("due_date", "outstanding")
    )
    total = ZERO
    for due_date, outstanding in rows:
        if not outstanding or outstanding <= 0:
            continue
        label = aging_bucket(days_overdue(due_date, today))
        buckets[label] += outstanding
        total += outstanding
    return AgingReport(today=today, buckets=buckets, total=total)


# ----------------------------
# Payables
# ----------------------------
@dataclass
class VendorBalance:
    vendor: Vendor
    balance: Decimal
    bill_count: int
    oldest_bill_date: Optional[date]
    oldest_due_date: Optional[date]
    days_overdue: int


def get_vendors_with_balance(company_id, today=None) -> List[VendorBalance]:
    """Vendors with open bills, largest amount owed first."""
    company_id = getattr(company_id, "pk", company_id)
    today = today or timezone.localdate()
    rows = (
        Bill.objects.for_company(company_id)
        .filter(status__in=OPEN_STATUSES)
        .values("vendor_id")
        .annotate(
            balance=Sum(_outstanding_expr()),
            bill_count=Count("id"),
            oldest_bill_date=Min("issue_date"),
            oldest_due_date=Min("due_date"),
        )
    )
    owing = {row["vendor_id"]: row for row in rows if (row["balance"] or ZERO) > 0}
    vendors = Vendor.objects.for_company(company_id).in_bulk(list(owing))

    result = [
        VendorBalance(
            vendor=vendors[vid],
            balance=row["balance"],
            bill_count=row["bill_count"],
            oldest_bill_date=row["oldest_bill_date"],
            oldest_due_date=row["oldest_due_date"],
            days_overdue=days_overdue(row["oldest_due_date"], today),
        )
        for vid, row in owing.items()
        if vid in vendors
    ]
    result.sort(key=lambda vb: (-vb.balance, vb.vendor.name))
    return result

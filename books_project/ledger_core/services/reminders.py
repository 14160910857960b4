import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import List, Optional

from django.conf import settings
from django.core.mail import EmailMultiAlternatives, get_connection
from django.db import transaction
from django.utils import timezone

from ..exceptions import ExternalDependencyError, NotFoundError
from ..models import Company, Customer, Invoice, ReminderLog, ReminderRecord
from ..models.invoice import OPEN_STATUSES
from .aging import (ReminderDecision, build_customer_balance,
                    get_customers_with_balance, offsets_fired_by,
                    open_balances)
from .audit_helper import log_action
from .reminder_email import build_reminder_email

logger = logging.getLogger(__name__)

ACTOR = "reminder-scheduler"


@dataclass(frozen=True)
class ReminderOutcome:
    customer_id: int
    # sent, skipped, failed, not_eligible, not_found
    status: str
    reason: str = ""
    offset: Optional[int] = None
    recipient: str = ""
    error: str = ""


def _open_invoices(company, customer):
    return (
        Invoice.objects.for_company(company)
        .filter(customer=customer, status__in=OPEN_STATUSES)
        .order_by("due_date", "invoice_number")
    )


def deliver_reminder(company, customer_balance):
    """
    Render and send one reminder email.
    Raises ExternalDependencyError when every attempt fails.
    """
    customer = customer_balance.customer
    invoices = list(_open_invoices(company, customer))
    content = build_reminder_email(
        company,
        customer,
        customer_balance.balance,
        customer_balance.days_overdue,
        due_date=customer_balance.oldest_due_date,
        invoice_numbers=[inv.invoice_number for inv in invoices],
    )
    from_email = company.reminder_from_email or settings.DEFAULT_FROM_EMAIL
    attempts = max(1, settings.LEDGER["REMINDER_MAX_ATTEMPTS"])

    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            connection = get_connection(
                fail_silently=False, timeout=settings.LEDGER["REMINDER_SEND_TIMEOUT"]
            )
            message = EmailMultiAlternatives(
                subject=content.subject,
                body=content.text,
                from_email=from_email,
                to=[customer.email],
                connection=connection,
            )
            message.attach_alternative(content.html, "text/html")
            message.send()
            return content
        except Exception as exc:
            last_error = exc
            logger.warning(
                "Reminder send attempt failed",
                extra={
                    "company_id": company.pk,
                    "customer_id": customer.pk,
                    "attempt": attempt,
                    "error": str(exc),
                },
            )
    raise ExternalDependencyError(
        f"Could not send reminder to {customer.email}: {last_error}"
    ) from last_error


def _claim(company, cb, now, manual):
    """
    Reserve the reminder before anything is sent.

    Eligibility is decided again against the locked record, so two runs
    working from the same snapshot never send the same offset twice.
    Returns (fresh CustomerBalance, previous record state), or
    (fresh CustomerBalance, None) when this run must not send.
    """
    today = timezone.localdate(now)
    ttl = timedelta(minutes=settings.LEDGER["REMINDER_CLAIM_TTL_MINUTES"])
    with transaction.atomic():
        record, _ = ReminderRecord.objects.select_for_update().get_or_create(
            company=company, customer=cb.customer
        )
        if record.claimed_at is not None and now - record.claimed_at < ttl:
            return replace(cb, decision=ReminderDecision(False, reason="in_progress")), None

        agg = {
            "balance": cb.balance,
            "invoice_count": cb.invoice_count,
            "last_invoice_date": cb.last_invoice_date,
            "oldest_due_date": cb.oldest_due_date,
        }
        fresh = build_customer_balance(cb.customer, agg, record, today, manual=manual)
        if not fresh.eligible:
            return fresh, None

        previous = (list(record.fired_offsets), record.last_sent_at)
        record.fired_offsets = offsets_fired_by(
            fresh.decision, fresh.reminder_offsets, record.fired_offsets
        )
        record.last_sent_at = now
        record.claimed_at = now
        record.save()
    return fresh, previous


def _release(company, cb, now, previous, error):
    """Undo a claim after a failed send and log the attempt."""
    with transaction.atomic():
        record = ReminderRecord.objects.select_for_update().get(
            company=company, customer=cb.customer
        )
        if record.claimed_at == now:
            record.fired_offsets, record.last_sent_at = previous
            record.claimed_at = None
            record.save()
        ReminderLog.objects.create(
            company=company,
            customer=cb.customer,
            offset=cb.decision.offset,
            status="failed",
            recipient=cb.customer.email,
            balance=cb.balance,
            days_overdue=cb.days_overdue,
            error=error,
        )


def _record_sent(company, cb, now):
    """Confirm the claim: clear it and write the send to the logs."""
    with transaction.atomic():
        record = ReminderRecord.objects.select_for_update().get(
            company=company, customer=cb.customer
        )
        record.claimed_at = None
        record.save()
        ReminderLog.objects.create(
            company=company,
            customer=cb.customer,
            offset=cb.decision.offset,
            status="sent",
            recipient=cb.customer.email,
            balance=cb.balance,
            days_overdue=cb.days_overdue,
        )
        log_action(
            action="send_reminder",
            instance=cb.customer,
            actor=ACTOR,
            company=company,
            changes={
                "offset": cb.decision.offset,
                "reason": cb.decision.reason,
                "balance": str(cb.balance),
                "fired_offsets": record.fired_offsets,
            },
        )


def _process(company, cb, now, manual=False) -> ReminderOutcome:
    customer = cb.customer
    if cb.decision.skipped:
        return ReminderOutcome(customer.pk, "skipped", reason=cb.decision.reason)
    if not cb.decision.eligible:
        return ReminderOutcome(customer.pk, "not_eligible", reason=cb.decision.reason)

    cb, previous = _claim(company, cb, now, manual)
    decision = cb.decision
    if previous is None:
        status = "skipped" if decision.skipped else "not_eligible"
        return ReminderOutcome(customer.pk, status, reason=decision.reason)

    # Network I/O happens outside any database transaction
    try:
        deliver_reminder(company, cb)
    except ExternalDependencyError as exc:
        logger.error(
            "Payment reminder failed",
            extra={"company_id": company.pk, "customer_id": customer.pk, "error": str(exc)},
        )
        _release(company, cb, now, previous, str(exc))
        return ReminderOutcome(
            customer.pk, "failed", reason=decision.reason, offset=decision.offset,
            recipient=customer.email, error=str(exc),
        )

    _record_sent(company, cb, now)
    logger.info(
        "Payment reminder sent",
        extra={
            "company_id": company.pk,
            "customer_id": customer.pk,
            "offset": decision.offset,
            "balance": str(cb.balance),
        },
    )
    return ReminderOutcome(
        customer.pk, "sent", reason=decision.reason, offset=decision.offset,
        recipient=customer.email,
    )


def _manual_targets(company, customer_ids, today):
    ids = list(dict.fromkeys(customer_ids))
    customers = Customer.objects.for_company(company).in_bulk(ids)
    balances = open_balances(company.pk, ids)
    records = {
        r.customer_id: r
        for r in ReminderRecord.objects.for_company(company).filter(customer_id__in=ids)
    }
    for cid in ids:
        customer = customers.get(cid)
        if customer is None:
            yield cid, None
        else:
            yield cid, build_customer_balance(
                customer, balances.get(cid), records.get(cid), today, manual=True
            )


def send_reminders(company_id, customer_ids=None, now=None) -> List[ReminderOutcome]:
    """
    Send payment reminders.

    customer_ids=None sends to every customer the schedule says is due
    today. Explicit ids are a manual send: timing is waived but customers
    with no balance, reminders disabled or no email are still skipped.
    Every customer is handled independently; one failure never blocks
    the rest.
    """
    company_id = getattr(company_id, "pk", company_id)
    now = now or timezone.now()
    today = timezone.localdate(now)
    company = Company.objects.filter(pk=company_id).first()
    if company is None:
        raise NotFoundError(f"Company {company_id} does not exist")

    outcomes = []
    if customer_ids is None:
        for cb in get_customers_with_balance(company_id, today):
            outcomes.append(_process(company, cb, now))
    else:
        for cid, cb in _manual_targets(company, customer_ids, today):
            if cb is None:
                outcomes.append(ReminderOutcome(cid, "not_found", reason="not_found"))
                continue
            outcomes.append(_process(company, cb, now, manual=True))

    counts = {}
    for outcome in outcomes:
        counts[outcome.status] = counts.get(outcome.status, 0) + 1
    logger.info(
        "Reminder run finished",
        extra={"company_id": company_id, "manual": customer_ids is not None, **counts},
    )
    return outcomes

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task  # register this function as a Celery task
def send_due_reminders(company_id):
    # import services lazily to avoid circular imports at module import time
    from .services.reminders import send_reminders

    outcomes = send_reminders(company_id)
    # Summarize for the result backend: {"sent": 2, "skipped": 1, ...}
    summary = {}
    for outcome in outcomes:
        summary[outcome.status] = summary.get(outcome.status, 0) + 1
    return summary


@shared_task
def send_due_reminders_for_all_companies():
    from .models import Company

    # One task per company so a slow mail server only delays that company
    company_ids = list(Company.objects.values_list("pk", flat=True))
    for company_id in company_ids:
        send_due_reminders.delay(company_id)
    logger.info("Queued reminder runs", extra={"companies": len(company_ids)})
    return len(company_ids)


@shared_task
def refresh_overdue_invoices(company_id):
    from .services.aging import refresh_invoice_statuses

    return refresh_invoice_statuses(company_id)


@shared_task
def refresh_overdue_invoices_for_all_companies():
    from .models import Company

    return sum(
        refresh_overdue_invoices(company_id)
        for company_id in Company.objects.values_list("pk", flat=True)
    )


@shared_task
def import_bank_feed_task(company_id, bank_account_id, raw_feed, file_name=None):
    from .services.bank_feed import import_bank_feed

    result = import_bank_feed(company_id, bank_account_id, raw_feed, file_name=file_name)
    return {
        "import_id": result.feed_import.pk,
        "parsed": result.parsed_count,
        "skipped": result.skipped_count,
        "errors": result.errors,
    }

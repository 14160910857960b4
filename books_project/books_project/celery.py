""" When you run Celery workers, "celery -A books_project worker -l info"
    The -A books_project means:
    Import books_project/__init__.py →
    which exposes celery_app →  now Celery knows what to run.

    Daily reminder runs are scheduled with beat:
    "celery -A books_project beat -l info" """
from __future__ import annotations
import os
from celery import Celery
from celery.schedules import crontab

# ensure Django settings are set for Celery
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "books_project.settings")

# name should match your project package
celery_app = Celery("books_project")

# read config from Django settings, using CELERY_ prefix
celery_app.config_from_object("django.conf:settings", namespace="CELERY")

# autoload tasks from installed apps
celery_app.autodiscover_tasks()

# Periodic jobs: flag overdue invoices, then send due payment reminders
celery_app.conf.beat_schedule = {
    "refresh-overdue-invoices": {
        "task": "ledger_core.tasks.refresh_overdue_invoices_for_all_companies",
        "schedule": crontab(hour=8, minute=30),
    },
    "send-due-payment-reminders": {
        "task": "ledger_core.tasks.send_due_reminders_for_all_companies",
        "schedule": crontab(hour=9, minute=0),
    },
}

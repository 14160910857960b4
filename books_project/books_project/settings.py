import os
import sys
from decimal import Decimal
from pathlib import Path

import dj_database_url
from dotenv import load_dotenv

from .logging_config import get_logging_config

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "changeme")
DEBUG = os.getenv("DJANGO_DEBUG", "True") == "True"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost").split(",")

# pytest / "manage.py test" invocations
TESTING = (
    "PYTEST_CURRENT_TEST" in os.environ
    or "pytest" in sys.argv[0]
    or "test" in sys.argv
)

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "ledger_core.apps.LedgerCoreConfig",
]

# The core is invoked through service calls; no URL routes or middleware are shipped
MIDDLEWARE = []

# Email templates ship inside the app (ledger_core/templates/emails)
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {"context_processors": []},
    },
]

# =============================================================================
# Database Configuration
# =============================================================================
DATABASES = {
    "default": dj_database_url.config(
        env="DATABASE_URL",
        default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
        conn_max_age=600,
    )
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

# =============================================================================
# Email Configuration (payment reminders)
# =============================================================================
EMAIL_BACKEND = os.getenv(
    "EMAIL_BACKEND",
    "django.core.mail.backends.console.EmailBackend"  # Console output for dev
)
EMAIL_HOST = os.getenv("EMAIL_HOST", "")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
EMAIL_USE_TLS = os.getenv("EMAIL_USE_TLS", "True") == "True"
EMAIL_HOST_USER = os.getenv("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.getenv("EMAIL_HOST_PASSWORD", "")
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "Accounts Team <noreply@example.com>")

# =============================================================================
# Celery
# =============================================================================
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_ALWAYS_EAGER = TESTING or os.getenv("CELERY_TASK_ALWAYS_EAGER", "False") == "True"

# =============================================================================
# Ledger core
# =============================================================================
LEDGER = {
    # Control accounts resolved by code in each company's chart
    "AR_ACCOUNT_CODE": os.getenv("LEDGER_AR_ACCOUNT_CODE", "1200"),
    "AP_ACCOUNT_CODE": os.getenv("LEDGER_AP_ACCOUNT_CODE", "2000"),
    "SALES_TAX_ACCOUNT_CODE": os.getenv("LEDGER_SALES_TAX_ACCOUNT_CODE", "2200"),
    "OPENING_BALANCE_EQUITY_CODE": os.getenv("LEDGER_OPENING_BALANCE_EQUITY_CODE", "3900"),
    # "Net N" payment terms fallback
    "DEFAULT_PAYMENT_TERMS_DAYS": int(os.getenv("LEDGER_DEFAULT_PAYMENT_TERMS_DAYS", "30")),
    # Reminder schedule defaults (days past due) + recurrence after the last offset
    "DEFAULT_REMINDER_OFFSETS": "0,7,15,30",
    "DEFAULT_REMINDER_INTERVAL_DAYS": 30,
    # Seconds before an SMTP connection attempt is abandoned
    "REMINDER_SEND_TIMEOUT": int(os.getenv("LEDGER_REMINDER_SEND_TIMEOUT", "10")),
    "REMINDER_MAX_ATTEMPTS": int(os.getenv("LEDGER_REMINDER_MAX_ATTEMPTS", "2")),
    # A claim older than this is treated as abandoned by a crashed run
    "REMINDER_CLAIM_TTL_MINUTES": int(os.getenv("LEDGER_REMINDER_CLAIM_TTL_MINUTES", "15")),
    # (label, min days overdue, max days overdue or None)
    "AGING_BUCKETS": [
        ("1-30", 1, 30),
        ("31-60", 31, 60),
        ("61-90", 61, 90),
        ("90+", 91, None),
    ],
    # Tried in order after ISO dates
    "BANK_FEED_DATE_FORMATS": ["%m/%d/%Y", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d", "%d %b %Y"],
    # Balance sheet equation tolerance
    "BALANCE_TOLERANCE": Decimal("0.01"),
}

LOGGING = get_logging_config(debug=DEBUG)

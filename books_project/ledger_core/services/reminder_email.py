"""
Payment reminder email content.

A company can supply its own subject and body with placeholders:
[CUSTOMER_NAME] [COMPANY_NAME] [AMOUNT_DUE] [DAYS_OVERDUE] [DUE_DATE]
[INVOICE_NUMBERS]. Without one, the default templates in
templates/emails/ are rendered.
"""
from dataclasses import dataclass
from decimal import Decimal

from django.template.loader import render_to_string
from django.utils.html import escape, strip_tags


@dataclass(frozen=True)
class ReminderEmail:
    subject: str
    text: str
    html: str


def _placeholders(company, customer, balance, days_overdue, due_date, invoice_numbers):
    return {
        "[CUSTOMER_NAME]": customer.name,
        "[COMPANY_NAME]": company.name,
        "[AMOUNT_DUE]": f"{Decimal(balance):.2f}",
        "[DAYS_OVERDUE]": str(days_overdue),
        "[DUE_DATE]": due_date.strftime("%m/%d/%Y") if due_date else "N/A",
        "[INVOICE_NUMBERS]": ", ".join(invoice_numbers) or "N/A",
    }


def replace_placeholders(template, values):
    for key, value in values.items():
        template = template.replace(key, value)
    return template


def text_to_html(text):
    paragraphs = "".join(f"<p>{escape(line)}</p>" for line in text.split("\n"))
    return render_to_string("emails/plain_wrapper.html", {"body": paragraphs})


def build_reminder_email(company, customer, balance, days_overdue,
                         due_date=None, invoice_numbers=()) -> ReminderEmail:
    invoice_numbers = list(invoice_numbers)

    # Company custom template (both parts required)
    if company.reminder_subject and company.reminder_template:
        values = _placeholders(company, customer, balance, days_overdue, due_date, invoice_numbers)
        subject = replace_placeholders(company.reminder_subject, values)
        text = replace_placeholders(company.reminder_template, values)
        return ReminderEmail(subject=subject, text=text, html=text_to_html(text))

    context = {
        "company": company,
        "customer": customer,
        "balance": f"{Decimal(balance):.2f}",
        "days_overdue": days_overdue,
        "due_date": due_date,
        "invoice_numbers": ", ".join(invoice_numbers),
    }
    html = render_to_string("emails/payment_reminder.html", context)
    text = render_to_string("emails/payment_reminder.txt", context).strip()
    if not text:
        text = strip_tags(html)
    return ReminderEmail(
        subject=f"Payment Reminder - Outstanding Balance ${context['balance']}",
        text=text,
        html=html,
    )

import datetime
import smtplib
from decimal import Decimal
from unittest import mock

import pytest
from django.core import mail
from django.core.mail import EmailMultiAlternatives
from django.test import TestCase

from ledger_core.exceptions import NotFoundError
from ledger_core.models import AuditLog, Invoice, ReminderLog, ReminderRecord
from ledger_core.services import get_customers_with_balance, send_reminders
from ledger_core.services.reminder_email import build_reminder_email
from ledger_core.tasks import send_due_reminders

from .helpers import make_company, make_customer, make_invoice

NOW = datetime.datetime(2024, 6, 30, 9, 0, tzinfo=datetime.timezone.utc)
DUE = datetime.date(2024, 6, 20)
ISSUED = datetime.date(2024, 5, 21)


class SendRemindersTests(TestCase):

    def setUp(self):
        self.company = make_company()
        self.customers = [
            make_customer(self.company, "Acme", email="ap@acme.example"),
            make_customer(self.company, "Globex"),  # no email on file
            make_customer(self.company, "Initech", email="ap@initech.example"),
        ]
        for i, customer in enumerate(self.customers, start=1):
            make_invoice(self.company, customer, f"INV-{i}", "100.00",
                         issue_date=ISSUED, due_date=DUE)

    def by_customer(self, outcomes):
        return {o.customer_id: o for o in outcomes}

    def test_batch_send_skips_customer_without_email(self):
        outcomes = self.by_customer(send_reminders(self.company.pk, now=NOW))

        acme, globex, initech = self.customers
        self.assertEqual(outcomes[acme.pk].status, "sent")
        self.assertEqual(outcomes[globex.pk].status, "skipped")
        self.assertEqual(outcomes[globex.pk].reason, "no_email")
        self.assertEqual(outcomes[initech.pk].status, "sent")

        self.assertEqual(len(mail.outbox), 2)
        self.assertCountEqual(
            [m.to[0] for m in mail.outbox], ["ap@acme.example", "ap@initech.example"]
        )
        self.assertEqual(ReminderLog.objects.filter(status="sent").count(), 2)
        self.assertEqual(AuditLog.objects.filter(action="send_reminder").count(), 2)

    def test_reminder_content(self):
        send_reminders(self.company.pk, customer_ids=[self.customers[0].pk], now=NOW)
        message = mail.outbox[0]
        self.assertEqual(message.subject, "Payment Reminder - Outstanding Balance $100.00")
        self.assertIn("Acme", message.body)
        self.assertIn("INV-1", message.body)
        self.assertEqual(message.alternatives[0][1], "text/html")

    def test_same_day_rerun_sends_nothing(self):
        send_reminders(self.company.pk, now=NOW)
        mail.outbox.clear()

        outcomes = send_reminders(self.company.pk, now=NOW + datetime.timedelta(hours=3))
        self.assertEqual(len(mail.outbox), 0)
        self.assertNotIn("sent", [o.status for o in outcomes])

    def test_one_failure_does_not_block_the_rest(self):
        real_send = EmailMultiAlternatives.send

        def flaky_send(message, fail_silently=False):
            if message.to == ["ap@acme.example"]:
                raise smtplib.SMTPServerDisconnected("connection dropped")
            return real_send(message, fail_silently)

        with mock.patch.object(EmailMultiAlternatives, "send", autospec=True, side_effect=flaky_send):
            outcomes = self.by_customer(send_reminders(self.company.pk, now=NOW))

        acme, _, initech = self.customers
        self.assertEqual(outcomes[acme.pk].status, "failed")
        self.assertIn("connection dropped", outcomes[acme.pk].error)
        self.assertEqual(outcomes[initech.pk].status, "sent")
        self.assertEqual(len(mail.outbox), 1)

        # Failed customer keeps its schedule, so tomorrow's run retries it
        record = ReminderRecord.objects.get(customer=acme)
        self.assertEqual(record.fired_offsets, [])
        self.assertIsNone(record.last_sent_at)
        self.assertIsNone(record.claimed_at)
        self.assertTrue(ReminderLog.objects.filter(customer=acme, status="failed").exists())

    def test_runs_from_the_same_snapshot_send_each_offset_once(self):
        # Two overlapping runs that both read balances before either sent
        snapshot = get_customers_with_balance(self.company.pk, NOW.date())
        with mock.patch("ledger_core.services.reminders.get_customers_with_balance",
                        return_value=snapshot):
            first = self.by_customer(send_reminders(self.company.pk, now=NOW))
            second = self.by_customer(send_reminders(self.company.pk, now=NOW))

        acme = self.customers[0]
        self.assertEqual(first[acme.pk].status, "sent")
        self.assertEqual(second[acme.pk].status, "not_eligible")
        self.assertEqual(len(mail.outbox), 2)
        self.assertEqual(ReminderLog.objects.filter(status="sent").count(), 2)

    def test_customer_claimed_by_another_run_is_left_alone(self):
        acme, _, initech = self.customers
        ReminderRecord.objects.create(
            company=self.company, customer=acme,
            claimed_at=NOW - datetime.timedelta(minutes=1),
        )
        outcomes = self.by_customer(send_reminders(self.company.pk, now=NOW))

        self.assertEqual((outcomes[acme.pk].status, outcomes[acme.pk].reason),
                         ("not_eligible", "in_progress"))
        self.assertEqual(outcomes[initech.pk].status, "sent")
        self.assertEqual([m.to[0] for m in mail.outbox], ["ap@initech.example"])

    def test_abandoned_claim_is_taken_over(self):
        acme = self.customers[0]
        ReminderRecord.objects.create(
            company=self.company, customer=acme,
            claimed_at=NOW - datetime.timedelta(hours=2),
        )
        outcomes = self.by_customer(send_reminders(self.company.pk, now=NOW))
        self.assertEqual(outcomes[acme.pk].status, "sent")
        self.assertIsNone(ReminderRecord.objects.get(customer=acme).claimed_at)

    def test_manual_send_ignores_schedule(self):
        acme = self.customers[0]
        send_reminders(self.company.pk, now=NOW)
        mail.outbox.clear()

        outcomes = send_reminders(self.company.pk, customer_ids=[acme.pk], now=NOW)
        self.assertEqual([o.status for o in outcomes], ["sent"])
        self.assertEqual(len(mail.outbox), 1)

    def test_manual_send_still_skips_zero_balance_and_unknown_ids(self):
        acme = self.customers[0]
        Invoice.objects.filter(customer=acme).update(status="paid", paid_amount=Decimal("100.00"))

        outcomes = send_reminders(self.company.pk, customer_ids=[acme.pk, 987654], now=NOW)
        self.assertEqual([(o.status, o.reason) for o in outcomes],
                         [("skipped", "zero_balance"), ("not_found", "not_found")])
        self.assertEqual(len(mail.outbox), 0)

    def test_settled_customer_schedule_is_reset(self):
        acme = self.customers[0]
        send_reminders(self.company.pk, now=NOW)
        self.assertNotEqual(ReminderRecord.objects.get(customer=acme).fired_offsets, [])

        Invoice.objects.filter(customer=acme).update(status="paid", paid_amount=Decimal("100.00"))
        send_reminders(self.company.pk, now=NOW)

        record = ReminderRecord.objects.get(customer=acme)
        self.assertEqual(record.fired_offsets, [])
        self.assertIsNone(record.last_sent_at)

    def test_disabled_customer_is_skipped(self):
        acme = self.customers[0]
        acme.reminders_enabled = False
        acme.save()
        outcomes = self.by_customer(send_reminders(self.company.pk, now=NOW))
        self.assertEqual(outcomes[acme.pk].reason, "disabled")

    def test_celery_task_summarizes_run(self):
        # Eager in tests
        summary = send_due_reminders.delay(self.company.pk).get()
        self.assertEqual(sum(summary.values()), 3)


class ReminderEmailTemplateTests(TestCase):

    def test_company_template_placeholders(self):
        company = make_company()
        company.reminder_subject = "[COMPANY_NAME]: [AMOUNT_DUE] due"
        company.reminder_template = "Hi [CUSTOMER_NAME],\n[DAYS_OVERDUE] days late on [INVOICE_NUMBERS]."
        company.save()
        customer = make_customer(company, "Acme", email="ap@acme.example")

        email = build_reminder_email(
            company, customer, Decimal("12.5"), 4, due_date=DUE, invoice_numbers=["INV-9"]
        )
        self.assertEqual(email.subject, "Test Co: 12.50 due")
        self.assertEqual(email.text, "Hi Acme,\n4 days late on INV-9.")
        self.assertIn("<p>Hi Acme,</p>", email.html)


@pytest.mark.django_db
def test_unknown_company_raises_not_found():
    with pytest.raises(NotFoundError):
        send_reminders(123456)

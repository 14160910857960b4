from django.core.management.base import BaseCommand, CommandError

from ledger_core.exceptions import NotFoundError
from ledger_core.models import Company
from ledger_core.services import refresh_invoice_statuses, send_reminders


class Command(BaseCommand):
    help = "Send payment reminders that are due today (or to specific customers)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--company", type=int, help="Company id (default: every company)"
        )
        parser.add_argument(
            "--customer",
            type=int,
            action="append",
            dest="customers",
            help="Send now to this customer id, ignoring the schedule (repeatable)",
        )

    def handle(self, *args, **options):
        customers = options["customers"]
        if customers and not options["company"]:
            raise CommandError("--customer requires --company")

        if options["company"]:
            company_ids = [options["company"]]
        else:
            company_ids = list(Company.objects.values_list("pk", flat=True))

        for company_id in company_ids:
            try:
                refresh_invoice_statuses(company_id)
                outcomes = send_reminders(company_id, customer_ids=customers)
            except NotFoundError as exc:
                raise CommandError(str(exc))

            for outcome in outcomes:
                line = f"company={company_id} customer={outcome.customer_id} {outcome.status}"
                if outcome.reason:
                    line += f" ({outcome.reason})"
                if outcome.status == "sent":
                    self.stdout.write(self.style.SUCCESS(line))
                elif outcome.status == "failed":
                    self.stdout.write(self.style.ERROR(f"{line}: {outcome.error}"))
                else:
                    self.stdout.write(line)

from django.core.management.base import BaseCommand
from django.utils.dateparse import parse_date

from ledger_core.models import Company
from ledger_core.services import get_balance_sheet, get_trial_balance


class Command(BaseCommand):
    help = "Check that the trial balance and balance sheet balance for each company."

    def add_arguments(self, parser):
        parser.add_argument("--company", type=int, help="Company id (default: every company)")
        parser.add_argument("--as-of", help="YYYY-MM-DD (default: today)")

    def handle(self, *args, **options):
        as_of = parse_date(options["as_of"]) if options["as_of"] else None
        companies = Company.objects.order_by("pk")
        if options["company"]:
            companies = companies.filter(pk=options["company"])

        faults = 0
        for company in companies:
            tb = get_trial_balance(company.pk, as_of)
            bs = get_balance_sheet(company.pk, as_of)
            ok = tb.is_balanced and bs.is_balanced
            faults += 0 if ok else 1
            style = self.style.SUCCESS if ok else self.style.ERROR
            self.stdout.write(style(
                f"{company.name}: TB debit={tb.total_debit} credit={tb.total_credit} "
                f"[{'ok' if tb.is_balanced else 'UNBALANCED'}]; "
                f"BS assets={bs.total_assets} L+E={bs.total_liabilities_and_equity} "
                f"[{'ok' if bs.is_balanced else 'UNBALANCED'}]"
            ))

        if faults:
            # Non-zero exit for cron/CI
            raise SystemExit(1)

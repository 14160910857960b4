from django.core.management.base import BaseCommand, CommandError

from ledger_core.exceptions import FeedFormatError, NotFoundError
from ledger_core.services import import_bank_feed


class Command(BaseCommand):
    help = "Import a bank statement CSV (date, description, amount) into a bank account."

    def add_arguments(self, parser):
        parser.add_argument("csv_path", help="Path to the CSV file")
        parser.add_argument("--company", type=int, required=True, help="Company id")
        parser.add_argument("--bank-account", type=int, required=True, help="Bank account id")
        parser.add_argument(
            "--queue",
            action="store_true",
            help="Hand the import to a Celery worker instead of running it here",
        )

    def handle(self, *args, **options):
        path = options["csv_path"]
        # Bytes; the import decodes and rejects non UTF-8 files
        with open(path, "rb") as fh:
            raw_feed = fh.read()

        if options["queue"]:
            from ledger_core.tasks import import_bank_feed_task

            try:
                # utf-8-sig drops a BOM written by spreadsheet exports
                text = raw_feed.decode("utf-8-sig")
            except UnicodeDecodeError as exc:
                raise CommandError(f"{path} is not UTF-8 text: {exc.reason}")
            task = import_bank_feed_task.delay(
                options["company"], options["bank_account"], text, path
            )
            self.stdout.write(self.style.SUCCESS(f"Queued import task {task.id}"))
            return

        try:
            result = import_bank_feed(
                options["company"], options["bank_account"], raw_feed,
                file_name=path, actor="import_bank_feed",
            )
        except (FeedFormatError, NotFoundError) as exc:
            raise CommandError(str(exc))

        self.stdout.write(
            self.style.SUCCESS(
                f"Imported {result.parsed_count} rows, skipped {result.skipped_count}"
            )
        )
        for error in result.errors:
            self.stdout.write(self.style.WARNING(f"  {error}"))

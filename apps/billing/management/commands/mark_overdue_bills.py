from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_date

from apps.billing.services import mark_overdue


class Command(BaseCommand):
    help = "Mark pending bills past their due date as overdue."

    def add_arguments(self, parser):
        parser.add_argument("--date", help="Treat this YYYY-MM-DD as today.")

    def handle(self, *args, **options):
        today = None
        if options.get("date"):
            today = parse_date(options["date"])
            if today is None:
                raise CommandError("--date must be YYYY-MM-DD")
        marked = mark_overdue(today=today)
        self.stdout.write(self.style.SUCCESS(f"Overdue bills: {marked}"))

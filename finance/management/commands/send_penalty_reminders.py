"""
Warn flatmates below their fair share ahead of the next penalty check.

The penalty scheduler runs this every PENALTY_REMINDER_INTERVAL_HOURS when
autostarted; without it, run a few times a day via cron:
    python manage.py send_penalty_reminders --days-ahead 1
"""
from django.conf import settings
from django.core.management.base import BaseCommand

from finance.services import send_penalty_reminders


class Command(BaseCommand):
    help = "Notify users in deficit whose flat penalty check is coming up"

    def add_arguments(self, parser):
        parser.add_argument(
            "--days-ahead",
            type=int,
            default=settings.PENALTY_REMINDER_DAYS_AHEAD,
            help="Remind about checks due within this many days",
        )

    def handle(self, *args, **options):
        sent = send_penalty_reminders(days_ahead=options["days_ahead"])
        self.stdout.write(self.style.SUCCESS(f"Reminders sent: {sent}"))

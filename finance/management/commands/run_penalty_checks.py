"""
Management command to run one penalty evaluation pass.

Useful from cron when the in-process scheduler is disabled, or by hand:
    python manage.py run_penalty_checks --flat 3 --force
"""
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from finance.models import PenaltySettings
from finance.services import (
    calculate_penalty_amount,
    check_and_apply_penalties,
    eligible_deficits,
    flat_contribution_summary,
)
from flats.models import Flat


class Command(BaseCommand):
    help = "Evaluate contribution penalties for every flat (or one flat)"

    def add_arguments(self, parser):
        parser.add_argument(
            "--flat",
            type=int,
            help="Only evaluate the flat with this ID",
        )
        parser.add_argument(
            "--force",
            action="store_true",
            help="Ignore the warning period and evaluate now",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show who would be penalised without creating penalties",
        )

    def handle(self, *args, **options):
        flat_id = options.get("flat")
        force = options.get("force", False)
        dry_run = options.get("dry_run", False)

        flats = Flat.objects.order_by("pk")
        if flat_id is not None:
            flats = flats.filter(pk=flat_id)
            if not flats.exists():
                raise CommandError(f"Flat {flat_id} does not exist")

        now = timezone.now()
        total_created = 0
        skipped_count = 0

        for flat in flats:
            if dry_run:
                self._preview(flat, force, now)
                continue

            result = check_and_apply_penalties(flat.pk, force=force, now=now)
            if not result.applied:
                self.stdout.write(
                    self.style.WARNING(f"  SKIP: {flat} ({result.skipped_reason})")
                )
                skipped_count += 1
                continue

            for penalty in result.penalties:
                self.stdout.write(
                    self.style.SUCCESS(
                        f"  CREATED: {penalty.amount} for {penalty.user} in {flat}"
                    )
                )
            total_created += len(result.penalties)

        if dry_run:
            return

        # Summary
        self.stdout.write("")
        self.stdout.write(self.style.SUCCESS(f"Created: {total_created}"))
        self.stdout.write(self.style.WARNING(f"Skipped: {skipped_count}"))

    def _preview(self, flat, force, now):
        penalty_settings = PenaltySettings.objects.get_for_flat(flat.pk)
        if penalty_settings is None:
            self.stdout.write(self.style.WARNING(f"  SKIP: {flat} (no penalty settings)"))
            return

        if not force and not penalty_settings.is_due(now):
            self.stdout.write(
                self.style.WARNING(
                    f"  SKIP: {flat} (next check {penalty_settings.next_penalty_due_at()})"
                )
            )
            return

        summary = flat_contribution_summary(flat)
        amount = calculate_penalty_amount(
            summary["total_amount"],
            penalty_settings.contribution_penalty_percentage,
        )
        for member in eligible_deficits(summary, penalty_settings):
            self.stdout.write(
                self.style.SUCCESS(
                    f"  DRY-RUN: Would penalise {member['user']} {amount} in {flat} "
                    f"(deficit {member['deficit']:.2f})"
                )
            )

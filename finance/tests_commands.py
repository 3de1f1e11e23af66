"""
Tests for the penalty management commands.
"""
from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from django.utils import timezone

from notifications.models import Notification
from .models import Penalty, PenaltySettings
from .tests import FlatTestMixin


class RunPenaltyChecksCommandTests(FlatTestMixin, TestCase):
    def setUp(self):
        self.flat = self.create_flat()
        self.alice = self.create_user(self.flat, "alice@roomie.test")
        self.bob = self.create_user(self.flat, "bob@roomie.test")
        self.add_entry(self.alice, "100")
        self.add_entry(self.bob, "300")
        self.penalty_settings = PenaltySettings.objects.create(
            flat=self.flat,
            contribution_penalty_percentage=Decimal("5"),
            warning_period_days=7,
        )

    def test_creates_penalties_for_due_flats(self):
        out = StringIO()
        call_command("run_penalty_checks", stdout=out)

        self.assertEqual(Penalty.objects.filter(user=self.alice).count(), 1)
        self.assertIn("Created: 1", out.getvalue())

    def test_skips_flats_that_are_not_due(self):
        self.penalty_settings.last_penalty_applied_at = timezone.now() - timedelta(days=1)
        self.penalty_settings.save()

        out = StringIO()
        call_command("run_penalty_checks", stdout=out)

        self.assertFalse(Penalty.objects.exists())
        self.assertIn("not due", out.getvalue())

    def test_force_overrides_warning_period(self):
        self.penalty_settings.last_penalty_applied_at = timezone.now()
        self.penalty_settings.save()

        call_command("run_penalty_checks", "--force", stdout=StringIO())

        self.assertEqual(Penalty.objects.count(), 1)

    def test_dry_run_creates_nothing(self):
        out = StringIO()
        call_command("run_penalty_checks", "--dry-run", stdout=out)

        self.assertFalse(Penalty.objects.exists())
        self.assertIn("DRY-RUN", out.getvalue())
        self.penalty_settings.refresh_from_db()
        self.assertIsNone(self.penalty_settings.last_penalty_applied_at)

    def test_unknown_flat_is_an_error(self):
        with self.assertRaises(CommandError):
            call_command("run_penalty_checks", "--flat", str(self.flat.pk + 50), stdout=StringIO())


class SendPenaltyRemindersCommandTests(FlatTestMixin, TestCase):
    def test_reports_reminders_sent(self):
        flat = self.create_flat()
        alice = self.create_user(flat, "alice@roomie.test")
        bob = self.create_user(flat, "bob@roomie.test")
        self.add_entry(alice, "50")
        self.add_entry(bob, "250")
        PenaltySettings.objects.create(
            flat=flat,
            warning_period_days=2,
            last_penalty_applied_at=timezone.now() - timedelta(days=1, hours=20),
        )

        out = StringIO()
        call_command("send_penalty_reminders", "--days-ahead", "1", stdout=out)

        self.assertIn("Reminders sent: 1", out.getvalue())
        self.assertTrue(
            Notification.objects.filter(recipient=alice, title="Penalty Reminder").exists()
        )

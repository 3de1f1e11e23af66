from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock, patch

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from flats.models import Flat
from notifications.models import Notification
from .contributions import (
    compute_fair_share,
    compute_total,
    compute_user_contribution,
    summarize_contributions,
)
from .models import Entry, Penalty, PenaltySettings
from .services import (
    apply_penalties_for_flat,
    calculate_penalty_amount,
    check_and_apply_penalties,
    send_penalty_reminders,
)

User = get_user_model()


def make_entry(user_id, amount):
    return SimpleNamespace(user_id=user_id, amount=Decimal(amount))


class ContributionCalculatorTests(SimpleTestCase):
    def test_fair_share_splits_total_across_users(self):
        entries = [make_entry(1, "100"), make_entry(2, "300")]
        self.assertEqual(compute_total(entries), Decimal("400"))
        self.assertEqual(compute_fair_share(entries, 2), Decimal("200"))

    def test_fair_share_is_zero_without_users(self):
        entries = [make_entry(1, "100")]
        self.assertEqual(compute_fair_share(entries, 0), Decimal("0"))

    def test_user_contribution_only_counts_own_entries(self):
        entries = [make_entry(1, "40"), make_entry(2, "300"), make_entry(1, "60.50")]
        self.assertEqual(compute_user_contribution(entries, 1), Decimal("100.50"))
        self.assertEqual(compute_user_contribution(entries, 3), Decimal("0"))

    def test_summary_reports_deficits_and_percentages(self):
        users = [SimpleNamespace(pk=1), SimpleNamespace(pk=2)]
        entries = [make_entry(1, "100"), make_entry(2, "300")]

        summary = summarize_contributions(entries, users)

        self.assertEqual(summary["user_count"], 2)
        self.assertEqual(summary["fair_share"], Decimal("200"))
        first, second = summary["members"]
        self.assertEqual(first["deficit"], Decimal("100"))
        self.assertEqual(first["percentage"], Decimal("50.0"))
        self.assertEqual(second["deficit"], Decimal("0"))
        self.assertEqual(second["percentage"], Decimal("150.0"))

    def test_penalty_amount_rounds_half_up(self):
        self.assertEqual(calculate_penalty_amount(Decimal("400"), Decimal("5")), Decimal("20"))
        self.assertEqual(calculate_penalty_amount(Decimal("250"), Decimal("1")), Decimal("3"))
        self.assertEqual(calculate_penalty_amount(Decimal("333"), Decimal("3")), Decimal("10"))


class FlatTestMixin:
    def create_flat(self, username="flat-one"):
        return Flat.objects.create(name=f"Flat {username}", flat_username=username)

    def create_user(self, flat, email, **extra):
        extra.setdefault("name", email.split("@")[0].title())
        extra.setdefault("status", "ACTIVE")
        return User.objects.create_user(
            email=email,
            password="FlatPass123!",
            flat=flat,
            **extra,
        )

    def add_entry(self, user, amount, **extra):
        return Entry.objects.create(
            name="Groceries",
            amount=Decimal(amount),
            user=user,
            flat=user.flat,
            **extra,
        )


class PenaltySettingsModelTests(FlatTestMixin, TestCase):
    def setUp(self):
        self.flat = self.create_flat()

    def test_get_for_flat_returns_none_when_unconfigured(self):
        self.assertIsNone(PenaltySettings.objects.get_for_flat(self.flat.pk))

    def test_update_for_flat_creates_and_validates(self):
        admin = self.create_user(self.flat, "admin@roomie.test", role="ADMIN")

        penalty_settings = PenaltySettings.objects.update_for_flat(
            self.flat.pk,
            {"contribution_penalty_percentage": Decimal("5"), "warning_period_days": 7},
            updated_by=admin,
        )

        self.assertEqual(penalty_settings.warning_period_days, 7)
        self.assertEqual(penalty_settings.updated_by, admin)
        self.assertEqual(PenaltySettings.objects.count(), 1)

    def test_update_for_flat_rejects_zero_warning_period(self):
        with self.assertRaises(ValidationError):
            PenaltySettings.objects.update_for_flat(self.flat.pk, {"warning_period_days": 0})

    def test_update_for_flat_rejects_out_of_range_percentage(self):
        with self.assertRaises(ValidationError):
            PenaltySettings.objects.update_for_flat(
                self.flat.pk,
                {"contribution_penalty_percentage": Decimal("120")},
            )

    def test_selected_users_must_belong_to_flat(self):
        outsider = self.create_user(self.create_flat("flat-two"), "out@roomie.test")

        with self.assertRaises(ValidationError):
            PenaltySettings.objects.update_for_flat(
                self.flat.pk,
                {"selected_users": [outsider]},
            )

    def test_is_due_follows_warning_period(self):
        now = timezone.now()
        penalty_settings = PenaltySettings.objects.create(
            flat=self.flat,
            warning_period_days=3,
            last_penalty_applied_at=now - timedelta(days=2),
        )

        self.assertFalse(penalty_settings.is_due(now))
        self.assertTrue(penalty_settings.is_due(now + timedelta(days=1)))

    def test_never_applied_settings_are_due(self):
        penalty_settings = PenaltySettings.objects.create(flat=self.flat)
        self.assertIsNone(penalty_settings.next_penalty_due_at())
        self.assertTrue(penalty_settings.is_due())

    def test_system_penalty_cannot_name_a_creator(self):
        user = self.create_user(self.flat, "a@roomie.test")
        penalty = Penalty(
            user=user,
            flat=self.flat,
            type="MINIMUM_ENTRY",
            amount=Decimal("10"),
            description="Automatic",
            origin="SYSTEM",
            created_by=user,
        )
        with self.assertRaises(ValidationError):
            penalty.clean()


class ApplyPenaltiesTests(FlatTestMixin, TestCase):
    def setUp(self):
        self.flat = self.create_flat()
        self.alice = self.create_user(self.flat, "alice@roomie.test")
        self.bob = self.create_user(self.flat, "bob@roomie.test")
        self.penalty_settings = PenaltySettings.objects.create(
            flat=self.flat,
            contribution_penalty_percentage=Decimal("5"),
            warning_period_days=7,
        )

    def test_user_below_fair_share_is_penalised(self):
        self.add_entry(self.alice, "100")
        self.add_entry(self.bob, "300")

        penalties = apply_penalties_for_flat(self.flat, self.penalty_settings)

        self.assertEqual(len(penalties), 1)
        penalty = Penalty.objects.get()
        self.assertEqual(penalty.user, self.alice)
        self.assertEqual(penalty.amount, Decimal("20"))
        self.assertEqual(penalty.type, "MINIMUM_ENTRY")
        self.assertEqual(penalty.origin, "SYSTEM")
        self.assertIsNone(penalty.created_by)
        self.assertIsNotNone(penalty.next_penalty_date)
        self.assertIn("100.00", penalty.description)
        self.assertIn("200.00", penalty.description)
        self.assertTrue(penalty.description.startswith("Automatic penalty"))

    def test_selection_filter_takes_precedence_over_deficit(self):
        self.add_entry(self.alice, "100")
        self.add_entry(self.bob, "300")
        self.penalty_settings.selected_users.set([self.bob])

        penalties = apply_penalties_for_flat(self.flat, self.penalty_settings)

        self.assertEqual(penalties, [])
        self.assertFalse(Penalty.objects.exists())

    def test_flat_without_active_users_is_skipped(self):
        User.objects.filter(flat=self.flat).update(status="DEACTIVATED")

        penalties = apply_penalties_for_flat(self.flat, self.penalty_settings)

        self.assertEqual(penalties, [])
        self.assertFalse(Penalty.objects.exists())

    def test_entries_count_regardless_of_status(self):
        self.add_entry(self.alice, "100", status="REJECTED")
        self.add_entry(self.alice, "100", status="PENDING")
        self.add_entry(self.bob, "200", status="APPROVED")

        self.assertEqual(apply_penalties_for_flat(self.flat, self.penalty_settings), [])

    def test_soft_deleted_entries_are_ignored(self):
        self.add_entry(self.alice, "200")
        self.add_entry(self.bob, "200")
        self.add_entry(self.bob, "400").soft_delete()

        self.assertEqual(apply_penalties_for_flat(self.flat, self.penalty_settings), [])

    def test_equal_contributions_create_no_penalties(self):
        self.add_entry(self.alice, "150")
        self.add_entry(self.bob, "150")

        self.assertEqual(apply_penalties_for_flat(self.flat, self.penalty_settings), [])

    def test_failed_write_does_not_block_other_users(self):
        carol = self.create_user(self.flat, "carol@roomie.test")
        self.add_entry(self.alice, "100")
        self.add_entry(self.bob, "100")
        self.add_entry(carol, "400")

        real_create = Penalty.objects.create

        def flaky_create(**kwargs):
            if kwargs["user"] == self.alice:
                raise DatabaseError("write failed")
            return real_create(**kwargs)

        with patch.object(Penalty.objects, "create", side_effect=flaky_create):
            with self.assertLogs("finance.services", level="ERROR"):
                penalties = apply_penalties_for_flat(self.flat, self.penalty_settings)

        self.assertEqual([p.user for p in penalties], [self.bob])
        self.assertEqual(Penalty.objects.get().user, self.bob)

    def test_notifier_is_called_for_each_penalty(self):
        self.add_entry(self.bob, "300")
        notifier = Mock()

        penalties = apply_penalties_for_flat(self.flat, self.penalty_settings, notifier=notifier)

        notifier.notify_penalty_applied.assert_called_once_with(penalties[0])

    def test_notifier_failure_keeps_penalty(self):
        self.add_entry(self.bob, "300")
        notifier = Mock()
        notifier.notify_penalty_applied.side_effect = RuntimeError("push service down")

        with self.assertLogs("finance.services", level="ERROR"):
            penalties = apply_penalties_for_flat(self.flat, self.penalty_settings, notifier=notifier)

        self.assertEqual(len(penalties), 1)
        self.assertTrue(Penalty.objects.filter(user=self.alice).exists())

    def test_default_notifier_creates_in_app_notification(self):
        self.add_entry(self.bob, "300")

        apply_penalties_for_flat(self.flat, self.penalty_settings)

        notification = Notification.objects.get(recipient=self.alice, category="PENALTY")
        self.assertEqual(notification.title, "Contribution Penalty Applied")
        self.assertEqual(notification.type, "WARNING")


class CheckAndApplyPenaltiesTests(FlatTestMixin, TestCase):
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

    def test_missing_settings_skip_the_flat(self):
        self.penalty_settings.delete()

        result = check_and_apply_penalties(self.flat.pk)

        self.assertFalse(result.applied)
        self.assertEqual(result.skipped_reason, "no penalty settings")
        self.assertFalse(Penalty.objects.exists())

    def test_unknown_flat_is_skipped(self):
        result = check_and_apply_penalties(self.flat.pk + 100)
        self.assertFalse(result.applied)
        self.assertEqual(result.skipped_reason, "flat not found")

    def test_first_pass_applies_and_stamps_last_applied(self):
        now = timezone.now()

        result = check_and_apply_penalties(self.flat.pk, now=now)

        self.assertTrue(result.applied)
        self.assertEqual(len(result.penalties), 1)
        self.assertEqual(result.next_due_at, now + timedelta(days=7))
        self.penalty_settings.refresh_from_db()
        self.assertEqual(self.penalty_settings.last_penalty_applied_at, now)

    def test_pass_is_skipped_until_warning_period_elapses(self):
        now = timezone.now()
        check_and_apply_penalties(self.flat.pk, now=now)

        result = check_and_apply_penalties(self.flat.pk, now=now + timedelta(days=3))

        self.assertFalse(result.applied)
        self.assertEqual(result.skipped_reason, "not due")
        self.assertEqual(Penalty.objects.count(), 1)

        result = check_and_apply_penalties(self.flat.pk, now=now + timedelta(days=7))
        self.assertTrue(result.applied)
        self.assertEqual(Penalty.objects.count(), 2)

    def test_forced_pass_ignores_warning_period(self):
        now = timezone.now()
        self.penalty_settings.last_penalty_applied_at = now
        self.penalty_settings.save()

        result = check_and_apply_penalties(self.flat.pk, force=True, now=now)

        self.assertTrue(result.applied)
        self.assertTrue(result.penalties[0].description.startswith("Manual penalty"))

    def test_last_applied_is_stamped_once_per_pass(self):
        carol = self.create_user(self.flat, "carol@roomie.test")
        self.add_entry(carol, "0.01")

        with patch.object(
            PenaltySettings.objects,
            "mark_applied",
            wraps=PenaltySettings.objects.mark_applied,
        ) as mark_applied:
            result = check_and_apply_penalties(self.flat.pk)

        self.assertEqual(len(result.penalties), 2)
        mark_applied.assert_called_once()

    def test_last_applied_advances_even_when_a_write_fails(self):
        now = timezone.now()

        with patch.object(Penalty.objects, "create", side_effect=DatabaseError("write failed")):
            with self.assertLogs("finance.services", level="ERROR"):
                result = check_and_apply_penalties(self.flat.pk, now=now)

        self.assertTrue(result.applied)
        self.assertEqual(result.penalties, [])
        self.penalty_settings.refresh_from_db()
        self.assertEqual(self.penalty_settings.last_penalty_applied_at, now)

    def test_read_failure_leaves_last_applied_untouched(self):
        with patch("finance.services.flat_contribution_summary", side_effect=DatabaseError("read failed")):
            with self.assertRaises(DatabaseError):
                check_and_apply_penalties(self.flat.pk)

        self.penalty_settings.refresh_from_db()
        self.assertIsNone(self.penalty_settings.last_penalty_applied_at)


class PenaltyReminderTests(FlatTestMixin, TestCase):
    def setUp(self):
        self.flat = self.create_flat()
        self.alice = self.create_user(self.flat, "alice@roomie.test")
        self.bob = self.create_user(self.flat, "bob@roomie.test")
        self.add_entry(self.alice, "100")
        self.add_entry(self.bob, "300")
        self.now = timezone.now()

    def test_reminds_users_in_deficit_before_due_check(self):
        PenaltySettings.objects.create(
            flat=self.flat,
            warning_period_days=7,
            last_penalty_applied_at=self.now - timedelta(days=6, hours=12),
        )

        sent = send_penalty_reminders(days_ahead=1, now=self.now)

        self.assertEqual(sent, 1)
        notification = Notification.objects.get(title="Penalty Reminder")
        self.assertEqual(notification.recipient, self.alice)
        self.assertIn("100.00", notification.message)

    def test_no_reminders_when_check_is_far_away(self):
        PenaltySettings.objects.create(
            flat=self.flat,
            warning_period_days=7,
            last_penalty_applied_at=self.now - timedelta(days=1),
        )

        self.assertEqual(send_penalty_reminders(days_ahead=1, now=self.now), 0)

    def test_never_run_flats_get_no_reminders(self):
        PenaltySettings.objects.create(flat=self.flat, warning_period_days=7)
        self.assertEqual(send_penalty_reminders(days_ahead=1, now=self.now), 0)

    def configure_due_tomorrow(self):
        PenaltySettings.objects.create(
            flat=self.flat,
            warning_period_days=7,
            last_penalty_applied_at=self.now - timedelta(days=6, hours=12),
        )

    def test_repeated_runs_do_not_spam_reminders(self):
        self.configure_due_tomorrow()

        sent = [
            send_penalty_reminders(days_ahead=1, now=self.now + timedelta(hours=offset))
            for offset in (0, 2, 4)
        ]

        self.assertEqual(sum(sent), 1)
        self.assertEqual(Notification.objects.filter(recipient=self.alice).count(), 1)

    def test_reminders_escalate_and_stop_after_final_notice(self):
        self.configure_due_tomorrow()
        titles = []

        for _ in range(4):
            Notification.objects.update(created_at=self.now - timedelta(hours=13))
            send_penalty_reminders(days_ahead=1, now=self.now)
            titles = list(
                Notification.objects.filter(recipient=self.alice)
                .order_by("id")
                .values_list("title", flat=True)
            )

        self.assertEqual(
            titles,
            [
                "Penalty Reminder",
                "Penalty Reminder (2nd Notice)",
                "Final Penalty Reminder",
            ],
        )

    def test_new_cycle_starts_a_fresh_reminder_sequence(self):
        self.configure_due_tomorrow()
        send_penalty_reminders(days_ahead=1, now=self.now)
        Notification.objects.update(created_at=self.now - timedelta(days=7))
        PenaltySettings.objects.filter(flat=self.flat).update(
            last_penalty_applied_at=self.now - timedelta(days=6, hours=20),
        )

        self.assertEqual(send_penalty_reminders(days_ahead=1, now=self.now), 1)
        self.assertEqual(
            Notification.objects.filter(title="Penalty Reminder").count(),
            2,
        )

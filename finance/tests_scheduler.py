"""
Tests for the per-flat penalty scheduler.

Each test drives its own PenaltyScheduler around a paused APScheduler
backend, so jobs are registered but never fire on their own.
"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock, patch

from apscheduler.schedulers.background import BackgroundScheduler
from django.conf import settings
from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone

from .models import Penalty, PenaltySettings
from .scheduler import REMINDER_JOB_ID, PenaltyScheduler, job_id_for
from .tests import FlatTestMixin


class PenaltySchedulerTestCase(FlatTestMixin, TestCase):
    def setUp(self):
        self.backend = BackgroundScheduler(timezone="UTC")
        self.backend.start(paused=True)
        self.addCleanup(self.backend.shutdown, wait=False)

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

    def make_scheduler(self, check=None):
        if check is None:
            return PenaltyScheduler(self.backend)
        return PenaltyScheduler(self.backend, check=check)


class SetupTests(PenaltySchedulerTestCase):
    def test_setup_runs_immediately_when_never_applied(self):
        scheduler = self.make_scheduler()

        self.assertTrue(scheduler.setup(self.flat.pk))

        penalty = Penalty.objects.get()
        self.assertEqual(penalty.user, self.alice)
        self.assertEqual(penalty.amount, Decimal("20"))
        self.penalty_settings.refresh_from_db()
        self.assertIsNotNone(self.penalty_settings.last_penalty_applied_at)

    def test_setup_arms_interval_job_with_warning_period(self):
        scheduler = self.make_scheduler()
        scheduler.setup(self.flat.pk)

        job = self.backend.get_job(job_id_for(self.flat.pk))
        self.assertIsNotNone(job)
        self.assertEqual(job.trigger.interval, timedelta(days=7))
        self.assertEqual(tuple(job.args), (self.flat.pk,))
        self.assertEqual(job.max_instances, 1)

    def test_setup_twice_keeps_a_single_job(self):
        scheduler = self.make_scheduler()

        scheduler.setup(self.flat.pk)
        scheduler.setup(self.flat.pk)

        self.assertEqual(len(self.backend.get_jobs()), 1)
        self.assertEqual(scheduler.scheduled_flat_ids(), [self.flat.pk])

    def test_repeated_setup_does_not_double_apply(self):
        scheduler = self.make_scheduler()

        scheduler.setup(self.flat.pk)
        scheduler.setup(self.flat.pk)

        self.assertEqual(Penalty.objects.count(), 1)

    def test_setup_without_settings_is_a_no_op(self):
        other_flat = self.create_flat("flat-two")
        scheduler = self.make_scheduler()

        with self.assertLogs("finance.scheduler", level="WARNING"):
            self.assertFalse(scheduler.setup(other_flat.pk))

        self.assertFalse(scheduler.is_scheduled(other_flat.pk))

    def test_setup_picks_up_new_warning_period(self):
        scheduler = self.make_scheduler()
        scheduler.setup(self.flat.pk)

        PenaltySettings.objects.update_for_flat(self.flat.pk, {"warning_period_days": 2})
        scheduler.clear(self.flat.pk)
        scheduler.setup(self.flat.pk)

        jobs = self.backend.get_jobs()
        self.assertEqual(len(jobs), 1)
        self.assertEqual(jobs[0].trigger.interval, timedelta(days=2))

    def test_failed_immediate_pass_still_arms_job(self):
        check = Mock(side_effect=DatabaseError("connection lost"))
        scheduler = self.make_scheduler(check=check)

        with self.assertLogs("finance.scheduler", level="ERROR"):
            self.assertTrue(scheduler.setup(self.flat.pk))

        check.assert_called_once_with(self.flat.pk)
        self.assertTrue(scheduler.is_scheduled(self.flat.pk))


class ClearTests(PenaltySchedulerTestCase):
    def test_clear_removes_job(self):
        scheduler = self.make_scheduler()
        scheduler.setup(self.flat.pk)

        self.assertTrue(scheduler.clear(self.flat.pk))

        self.assertFalse(scheduler.is_scheduled(self.flat.pk))
        self.assertEqual(self.backend.get_jobs(), [])

    def test_clear_is_safe_when_nothing_is_scheduled(self):
        scheduler = self.make_scheduler()
        self.assertFalse(scheduler.clear(self.flat.pk))

    def test_clear_only_affects_its_own_flat(self):
        other_flat = self.create_flat("flat-two")
        PenaltySettings.objects.create(flat=other_flat)
        scheduler = self.make_scheduler(check=Mock())

        scheduler.setup(self.flat.pk)
        scheduler.setup(other_flat.pk)
        scheduler.clear(self.flat.pk)

        self.assertEqual(scheduler.scheduled_flat_ids(), [other_flat.pk])


class StartAllTests(PenaltySchedulerTestCase):
    def test_start_all_sets_up_every_configured_flat(self):
        configured = self.create_flat("flat-two")
        PenaltySettings.objects.create(flat=configured)
        unconfigured = self.create_flat("flat-three")
        check = Mock()
        scheduler = self.make_scheduler(check=check)

        scheduler.start_all()

        self.assertEqual(scheduler.scheduled_flat_ids(), [self.flat.pk, configured.pk])
        self.assertFalse(scheduler.is_scheduled(unconfigured.pk))
        self.assertEqual(check.call_count, 2)

    def test_one_failing_flat_does_not_stop_the_others(self):
        other_flat = self.create_flat("flat-two")
        PenaltySettings.objects.create(flat=other_flat)

        def check(flat_id, **kwargs):
            if flat_id == self.flat.pk:
                raise DatabaseError("read failed")

        scheduler = self.make_scheduler(check=check)

        with self.assertLogs("finance.scheduler", level="ERROR"):
            scheduler.start_all()

        self.assertEqual(scheduler.scheduled_flat_ids(), [self.flat.pk, other_flat.pk])

    def test_start_bootstraps_and_shutdown_stops(self):
        backend = BackgroundScheduler(timezone="UTC")
        scheduler = PenaltyScheduler(backend, check=Mock())

        scheduler.start()
        self.assertTrue(backend.running)
        self.assertTrue(scheduler.is_scheduled(self.flat.pk))
        self.assertIsNotNone(backend.get_job(REMINDER_JOB_ID))

        scheduler.shutdown(wait=False)
        self.assertFalse(backend.running)


class TriggerManualTests(PenaltySchedulerTestCase):
    def test_manual_trigger_ignores_warning_period(self):
        self.penalty_settings.last_penalty_applied_at = timezone.now()
        self.penalty_settings.save()
        scheduler = self.make_scheduler()

        results = scheduler.trigger_manual(self.flat.pk)

        self.assertTrue(results[self.flat.pk].applied)
        penalty = Penalty.objects.get()
        self.assertTrue(penalty.description.startswith("Manual penalty"))

    def test_manual_trigger_without_flat_runs_every_flat(self):
        other_flat = self.create_flat("flat-two")
        check = Mock(return_value="done")
        scheduler = self.make_scheduler(check=check)

        results = scheduler.trigger_manual()

        self.assertEqual(results, {self.flat.pk: "done", other_flat.pk: "done"})
        check.assert_any_call(self.flat.pk, force=True, reason="Manual")
        check.assert_any_call(other_flat.pk, force=True, reason="Manual")

    def test_manual_trigger_does_not_arm_jobs(self):
        scheduler = self.make_scheduler(check=Mock())
        scheduler.trigger_manual(self.flat.pk)
        self.assertFalse(scheduler.is_scheduled(self.flat.pk))

    def test_run_check_logs_and_swallows_errors(self):
        scheduler = self.make_scheduler(check=Mock(side_effect=DatabaseError("timeout")))

        with self.assertLogs("finance.scheduler", level="ERROR") as logs:
            self.assertIsNone(scheduler.run_check(self.flat.pk))

        self.assertIn(f"flat {self.flat.pk}", logs.output[0])


class ScheduledTickTests(PenaltySchedulerTestCase):
    def setUp(self):
        super().setUp()
        # Closing connections would end the test transaction.
        patcher = patch("finance.scheduler.close_old_connections")
        patcher.start()
        self.addCleanup(patcher.stop)

    def run_at(self, moment, func, *args):
        with patch("django.utils.timezone.now", return_value=moment):
            return func(*args)

    def test_every_tick_applies_penalties(self):
        scheduler = self.make_scheduler()
        start = timezone.now()

        self.run_at(start + timedelta(milliseconds=5), scheduler.setup, self.flat.pk)
        self.run_at(start + timedelta(days=7, milliseconds=9), scheduler._run_scheduled, self.flat.pk)
        self.run_at(start + timedelta(days=14, milliseconds=2), scheduler._run_scheduled, self.flat.pk)

        self.assertEqual(Penalty.objects.filter(user=self.alice).count(), 3)
        self.penalty_settings.refresh_from_db()
        self.assertEqual(
            self.penalty_settings.last_penalty_applied_at,
            start + timedelta(days=14, milliseconds=2),
        )

    def test_tick_uses_automatic_reason(self):
        scheduler = self.make_scheduler()
        self.penalty_settings.last_penalty_applied_at = timezone.now()
        self.penalty_settings.save()

        result = scheduler._run_scheduled(self.flat.pk)

        self.assertTrue(result.applied)
        self.assertTrue(Penalty.objects.get().description.startswith("Automatic penalty"))

    def test_setup_pass_still_respects_due_date(self):
        self.penalty_settings.last_penalty_applied_at = timezone.now()
        self.penalty_settings.save()
        scheduler = self.make_scheduler()

        scheduler.setup(self.flat.pk)

        self.assertFalse(Penalty.objects.exists())
        self.assertTrue(scheduler.is_scheduled(self.flat.pk))


class ReminderJobTests(PenaltySchedulerTestCase):
    def setUp(self):
        super().setUp()
        patcher = patch("finance.scheduler.close_old_connections")
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_schedule_reminders_registers_single_job(self):
        scheduler = PenaltyScheduler(self.backend, remind=Mock())

        scheduler.schedule_reminders(hours=2)
        scheduler.schedule_reminders(hours=2)

        job = self.backend.get_job(REMINDER_JOB_ID)
        self.assertEqual(job.trigger.interval, timedelta(hours=2))
        self.assertEqual(len(self.backend.get_jobs()), 1)
        self.assertEqual(scheduler.scheduled_flat_ids(), [])

    def test_reminder_run_uses_configured_window(self):
        remind = Mock(return_value=2)
        scheduler = PenaltyScheduler(self.backend, remind=remind)

        self.assertEqual(scheduler._run_reminders(), 2)

        remind.assert_called_once_with(days_ahead=settings.PENALTY_REMINDER_DAYS_AHEAD)

    def test_reminder_errors_are_logged(self):
        scheduler = PenaltyScheduler(self.backend, remind=Mock(side_effect=DatabaseError("down")))

        with self.assertLogs("finance.scheduler", level="ERROR"):
            self.assertIsNone(scheduler._run_reminders())

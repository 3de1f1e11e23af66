"""
Per-flat recurring penalty checks.

A ``PenaltyScheduler`` owns one interval job per flat on an APScheduler
``BackgroundScheduler``. The finance app config builds a single instance at
startup; anything that needs to re-arm a flat (the settings API, management
commands) reaches it through the app registry. The same scheduler also runs
the recurring penalty reminder job.
"""
import logging
import threading

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from django.conf import settings
from django.db import close_old_connections

from flats.models import Flat
from .constants import AUTOMATIC_REASON, MANUAL_REASON
from .models import PenaltySettings
from .services import check_and_apply_penalties, send_penalty_reminders

logger = logging.getLogger(__name__)

JOB_PREFIX = "penalty-check-"
REMINDER_JOB_ID = "penalty-reminders"


def job_id_for(flat_id):
    return f"{JOB_PREFIX}{flat_id}"


class PenaltyScheduler:
    def __init__(self, scheduler=None, check=check_and_apply_penalties, remind=send_penalty_reminders):
        if scheduler is None:
            scheduler = BackgroundScheduler(timezone=settings.PENALTY_SCHEDULER_TIMEZONE)
        self.scheduler = scheduler
        self._check = check
        self._remind = remind
        self._lock = threading.RLock()

    # -------------------------
    # Lifecycle
    # -------------------------
    def start(self, bootstrap=True):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Penalty scheduler started")
        if bootstrap:
            self.start_all()
            self.schedule_reminders()

    def shutdown(self, wait=True):
        """Stop scheduling; with ``wait`` in-flight passes finish first."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Penalty scheduler stopped")

    def start_all(self):
        logger.info("Starting penalty checkers for all flats")
        for flat_id in Flat.objects.order_by("pk").values_list("pk", flat=True):
            try:
                self.setup(flat_id)
            except Exception:
                logger.exception(f"Could not set up penalty checker for flat {flat_id}")

    # -------------------------
    # Per-flat jobs
    # -------------------------
    def setup(self, flat_id):
        """
        (Re-)arm the flat's job from its stored settings.

        Runs one evaluation immediately, then every ``warning_period_days``.
        Returns False when the flat has no penalty settings.
        """
        penalty_settings = PenaltySettings.objects.get_for_flat(flat_id)
        if penalty_settings is None:
            logger.warning(f"No penalty settings found for flat {flat_id}. Skipping scheduler.")
            return False

        with self._lock:
            self.clear(flat_id)
            logger.info(
                f"Setting up scheduler for flat {flat_id} "
                f"(every {penalty_settings.warning_period_days} days)"
            )
            self.run_check(flat_id)
            self.scheduler.add_job(
                self._run_scheduled,
                trigger="interval",
                days=penalty_settings.warning_period_days,
                args=[flat_id],
                id=job_id_for(flat_id),
                name=f"Penalty check for flat {flat_id}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        return True

    def clear(self, flat_id):
        with self._lock:
            try:
                self.scheduler.remove_job(job_id_for(flat_id))
            except JobLookupError:
                return False
        logger.info(f"Cleared existing scheduler for flat {flat_id}")
        return True

    def trigger_manual(self, flat_id=None):
        """Forced out-of-band pass for one flat, or every flat when none is given."""
        if flat_id is None:
            flat_ids = list(Flat.objects.order_by("pk").values_list("pk", flat=True))
        else:
            flat_ids = [flat_id]

        logger.info(f"Manual penalty check requested for flats {flat_ids}")
        return {
            current: self.run_check(current, force=True, reason=MANUAL_REASON)
            for current in flat_ids
        }

    def run_check(self, flat_id, **kwargs):
        try:
            return self._check(flat_id, **kwargs)
        except Exception:
            logger.exception(f"Error in penalty checker for flat {flat_id}")
            return None

    def _run_scheduled(self, flat_id):
        # Scheduled ticks always evaluate; the due-date gate only guards setup().
        close_old_connections()
        try:
            return self.run_check(flat_id, force=True, reason=AUTOMATIC_REASON)
        finally:
            close_old_connections()

    # -------------------------
    # Reminders
    # -------------------------
    def schedule_reminders(self, hours=None):
        hours = hours or settings.PENALTY_REMINDER_INTERVAL_HOURS
        self.scheduler.add_job(
            self._run_reminders,
            trigger="interval",
            hours=hours,
            id=REMINDER_JOB_ID,
            name="Penalty reminders",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Penalty reminders scheduled every {hours} hours")

    def _run_reminders(self):
        close_old_connections()
        try:
            return self._remind(days_ahead=settings.PENALTY_REMINDER_DAYS_AHEAD)
        except Exception:
            logger.exception("Error while sending penalty reminders")
            return None
        finally:
            close_old_connections()

    # -------------------------
    # Introspection
    # -------------------------
    def is_scheduled(self, flat_id):
        return self.scheduler.get_job(job_id_for(flat_id)) is not None

    def scheduled_flat_ids(self):
        return sorted(
            int(job.id[len(JOB_PREFIX):])
            for job in self.scheduler.get_jobs()
            if job.id.startswith(JOB_PREFIX)
        )

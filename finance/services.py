import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from django.contrib.auth import get_user_model
from django.db import DatabaseError, transaction
from django.utils import timezone

from flats.models import Flat
from notifications.services import Notifier
from .constants import (
    AUTOMATIC_REASON,
    MANUAL_REASON,
    MINIMUM_ENTRY,
    REMINDER_MAX_NOTICES,
    REMINDER_MIN_INTERVAL_HOURS,
)
from .contributions import summarize_contributions
from .models import Entry, Penalty, PenaltySettings

User = get_user_model()

logger = logging.getLogger(__name__)


@dataclass
class PenaltyRunResult:
    flat_id: int
    applied: bool = False
    penalties: List[Penalty] = field(default_factory=list)
    next_due_at: Optional[datetime] = None
    skipped_reason: str = ""


def calculate_penalty_amount(total_amount, percentage):
    """Flat-wide penalty: a percentage of every entry in the flat, in whole units."""
    amount = Decimal(total_amount) * Decimal(percentage) / Decimal("100")
    return amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def flat_contribution_summary(flat):
    users = User.objects.active_in_flat(flat.pk).order_by("pk")
    entries = Entry.objects.filter(flat=flat, is_deleted=False)
    return summarize_contributions(entries, users)


def eligible_deficits(summary, penalty_settings):
    """Members in deficit, limited to the selected users when a selection exists."""
    selected_ids = {user.pk for user in penalty_settings.selected_users.all()}
    return [
        member
        for member in summary["members"]
        if member["deficit"] > 0
        and (not selected_ids or member["user"].pk in selected_ids)
    ]


def apply_penalties_for_flat(flat, penalty_settings, now=None, reason=AUTOMATIC_REASON, notifier=None):
    """
    Create a MINIMUM_ENTRY penalty for every eligible user below fair share.

    A failed write for one user is logged and the remaining users are still
    processed. Returns the penalties that were created.
    """
    now = now or timezone.now()
    notifier = notifier or Notifier(category="PENALTY")

    logger.info(f"Applying penalties for flat {flat.pk}")
    summary = flat_contribution_summary(flat)
    if not summary["user_count"]:
        logger.info(f"No active users in flat {flat.pk}. Skipping.")
        return []

    fair_share = summary["fair_share"]
    penalty_amount = calculate_penalty_amount(
        summary["total_amount"],
        penalty_settings.contribution_penalty_percentage,
    )
    logger.info(
        f"Flat {flat.pk}: total ₹{summary['total_amount']:.2f}, "
        f"fair share ₹{fair_share:.2f} across {summary['user_count']} users"
    )

    created = []
    for member in eligible_deficits(summary, penalty_settings):
        user = member["user"]
        description = (
            f"{reason} penalty for less entry ₹{member['contribution']:.2f} < "
            f"₹{fair_share:.2f} (deficit ₹{member['deficit']:.2f})"
        )
        try:
            with transaction.atomic():
                penalty = Penalty.objects.create(
                    user=user,
                    flat=flat,
                    type=MINIMUM_ENTRY,
                    amount=penalty_amount,
                    description=description,
                    origin="SYSTEM",
                    next_penalty_date=now,
                )
        except DatabaseError:
            logger.exception(f"Could not record penalty for user {user.pk} in flat {flat.pk}")
            continue

        logger.warning(
            f"User {user.pk} has a deficit of ₹{member['deficit']:.2f}. "
            f"Applied penalty of ₹{penalty_amount}."
        )
        created.append(penalty)

        try:
            notifier.notify_penalty_applied(penalty)
        except Exception:
            logger.exception(f"Penalty notification failed for user {user.pk}")

    return created


def check_and_apply_penalties(flat_id, force=False, reason=None, now=None, notifier=None):
    """
    One evaluation pass for a flat.

    Unless ``force`` is set, penalties are only applied once the warning
    period since the last pass has elapsed. A completed pass stamps
    ``last_penalty_applied_at`` exactly once.
    """
    now = now or timezone.now()
    reason = reason or (MANUAL_REASON if force else AUTOMATIC_REASON)
    result = PenaltyRunResult(flat_id=flat_id)

    logger.info(f"Checking penalties for flat {flat_id}")

    flat = Flat.objects.filter(pk=flat_id).first()
    if flat is None:
        logger.warning(f"No flat found with ID {flat_id}")
        result.skipped_reason = "flat not found"
        return result

    penalty_settings = PenaltySettings.objects.get_for_flat(flat_id)
    if penalty_settings is None:
        logger.info(f"No penalty settings for flat {flat_id}. Skipping.")
        result.skipped_reason = "no penalty settings"
        return result

    logger.info(
        f"Last penalty applied on: {penalty_settings.last_penalty_applied_at or 'Never'} "
        f"(every {penalty_settings.warning_period_days} days)"
    )

    if not force and not penalty_settings.is_due(now):
        result.next_due_at = penalty_settings.next_penalty_due_at()
        result.skipped_reason = "not due"
        logger.info(f"No penalty needed for flat {flat_id}. Next check due {result.next_due_at}")
        return result

    result.penalties = apply_penalties_for_flat(
        flat,
        penalty_settings,
        now=now,
        reason=reason,
        notifier=notifier,
    )
    PenaltySettings.objects.mark_applied(flat_id, now)
    result.applied = True
    result.next_due_at = now + penalty_settings.warning_period

    logger.info(f"Penalty pass complete for flat {flat_id}: {len(result.penalties)} penalties")
    return result


def send_penalty_reminders(days_ahead=1, now=None, notifier=None):
    """
    Warn users in deficit when their flat's next penalty check is close.

    Each user gets at most ``REMINDER_MAX_NOTICES`` reminders per check
    cycle, at least ``REMINDER_MIN_INTERVAL_HOURS`` apart, with the title
    escalating on every notice. Returns the number of reminders sent.
    """
    now = now or timezone.now()
    notifier = notifier or Notifier(category="PENALTY")
    horizon = now + timedelta(days=days_ahead)
    min_interval = timedelta(hours=REMINDER_MIN_INTERVAL_HOURS)
    sent = 0

    candidates = PenaltySettings.objects.filter(
        last_penalty_applied_at__isnull=False,
    ).select_related("flat").prefetch_related("selected_users")

    for penalty_settings in candidates:
        due_at = penalty_settings.next_penalty_due_at()
        if not (now <= due_at <= horizon):
            continue

        summary = flat_contribution_summary(penalty_settings.flat)
        for member in eligible_deficits(summary, penalty_settings):
            user = member["user"]
            previous = notifier.penalty_reminders_since(
                user,
                penalty_settings.last_penalty_applied_at,
            )
            count = previous.count()
            if count >= REMINDER_MAX_NOTICES:
                continue
            latest = previous.order_by("-created_at").first()
            if latest is not None and now - latest.created_at < min_interval:
                logger.info(f"Skipping penalty reminder for user {user.pk}: rate limited")
                continue

            if notifier.notify_penalty_reminder(user, due_at, member["deficit"], attempt=count + 1):
                logger.info(f"Penalty reminder sent to user {user.pk} (attempt {count + 1})")
                sent += 1

    logger.info(f"Sent {sent} penalty reminders")
    return sent

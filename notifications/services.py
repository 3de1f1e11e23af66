import logging

from django.db import DatabaseError, transaction

from .models import Notification

logger = logging.getLogger(__name__)

# Escalating titles, one per notice in a check cycle.
REMINDER_TITLES = (
    "Penalty Reminder",
    "Penalty Reminder (2nd Notice)",
    "Final Penalty Reminder",
)


class Notifier:
    """
    Fire-and-forget alerts for flatmates.

    Alerts are stored as in-app notifications; delivery to devices happens
    elsewhere. ``send`` never raises, so a failed alert cannot undo the
    write that triggered it.
    """

    def __init__(self, category="SYSTEM"):
        self.category = category

    def send(self, user, title, body, type="INFO", link=None):
        try:
            with transaction.atomic():
                return Notification.objects.create(
                    recipient=user,
                    title=title,
                    message=body,
                    category=self.category,
                    type=type,
                    link=link,
                )
        except DatabaseError:
            logger.exception(f"Failed to notify user {user.pk}: {title}")
            return None

    def send_many(self, users, title, body, type="INFO", link=None):
        return [self.send(user, title, body, type=type, link=link) for user in users]

    def notify_penalty_applied(self, penalty):
        if penalty.origin == "SYSTEM":
            title = "Contribution Penalty Applied"
            body = (
                f"Hi {penalty.user.name}, a ₹{penalty.amount} penalty has been "
                f"applied due to low contribution. {penalty.description}"
            )
        else:
            title = "Admin Penalty Applied"
            body = (
                f"Hi {penalty.user.name}, an admin has applied a ₹{penalty.amount} "
                f"penalty. {penalty.description}"
            )
        return self.send(penalty.user, title, body, type="WARNING", link="/penalties")

    def penalty_reminders_since(self, user, since):
        """Reminders already sent to ``user`` for the check cycle starting at ``since``."""
        return Notification.objects.filter(
            recipient=user,
            category="PENALTY",
            title__in=REMINDER_TITLES,
            created_at__gte=since,
        )

    def notify_penalty_reminder(self, user, penalty_date, deficit, attempt=1):
        date_label = penalty_date.strftime("%B %d, %Y")
        if attempt == 1:
            title = REMINDER_TITLES[0]
            body = (
                f"Hi {user.name}! Penalty check is scheduled for {date_label}. "
                f"You are ₹{deficit:.2f} short of your fair share. "
                "Add entries to avoid a penalty."
            )
        elif attempt == 2:
            title = REMINDER_TITLES[1]
            body = (
                f"{user.name}, the penalty check is on {date_label} and you are "
                f"still ₹{deficit:.2f} short. Add entries now to meet your fair share!"
            )
        else:
            title = REMINDER_TITLES[2]
            body = (
                f"{user.name}, the penalty check on {date_label} is close. "
                f"Add ₹{deficit:.2f} in entries immediately to avoid an automatic penalty."
            )
        return self.send(user, title, body, type="WARNING", link="/entries")

from django.db.models.signals import post_save
from django.dispatch import receiver
from django.contrib.auth import get_user_model

from finance.models import Entry
from .services import Notifier

User = get_user_model()


@receiver(post_save, sender=Entry)
def notify_entry_needs_approval(sender, instance, created, **kwargs):
    """
    Alert flat admins when a flatmate adds an entry that awaits approval.
    """
    if not created or instance.status != "PENDING":
        return

    recipients = User.objects.active_in_flat(instance.flat_id).filter(
        role__in=["ADMIN", "CO_ADMIN"],
    ).exclude(pk=instance.user_id)

    Notifier(category="ENTRY").send_many(
        recipients,
        "Entry Awaiting Approval",
        f"{instance.user} added '{instance.name}' for ₹{instance.amount}. "
        "Review it in entry management.",
        link="/entries",
    )


@receiver(post_save, sender=Entry)
def notify_entry_reviewed(sender, instance, created, update_fields=None, **kwargs):
    if created or not update_fields or "status" not in update_fields:
        return

    if instance.status == "APPROVED":
        title, notif_type = "Entry Approved", "SUCCESS"
    elif instance.status == "REJECTED":
        title, notif_type = "Entry Rejected", "ERROR"
    else:
        return

    Notifier(category="ENTRY").send(
        instance.user,
        title,
        f"Your entry '{instance.name}' for ₹{instance.amount} was {instance.status.lower()}.",
        type=notif_type,
        link="/entries",
    )

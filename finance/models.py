from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models, transaction
from django.utils import timezone

from flats.models import Flat
from .constants import (
    DEFAULT_CONTRIBUTION_PENALTY_PERCENTAGE,
    DEFAULT_WARNING_PERIOD_DAYS,
    MINIMUM_ENTRY,
)

User = settings.AUTH_USER_MODEL


# =========================
# Entry Model
# =========================
class Entry(models.Model):
    STATUS_CHOICES = [
        ("PENDING", "Pending"),
        ("APPROVED", "Approved"),
        ("REJECTED", "Rejected"),
    ]

    name = models.CharField(max_length=255)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    date_time = models.DateTimeField(default=timezone.now)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default="PENDING",
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="entries",
    )
    flat = models.ForeignKey(
        Flat,
        on_delete=models.CASCADE,
        related_name="entries",
    )
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-date_time"]
        verbose_name_plural = "entries"

    def __str__(self):
        return f"{self.name} - {self.amount} ({self.status})"

    def soft_delete(self):
        self.is_deleted = True
        self.deleted_at = timezone.now()
        self.save(update_fields=["is_deleted", "deleted_at"])


# =========================
# Penalty Model
# =========================
class Penalty(models.Model):
    TYPE_CHOICES = [
        (MINIMUM_ENTRY, "Minimum Entry"),
        ("LATE_PAYMENT", "Late Payment"),
        ("DAMAGE", "Damage"),
        ("OTHER", "Other"),
    ]

    # SYSTEM penalties come from the scheduler and never carry created_by.
    ORIGIN_CHOICES = [
        ("SYSTEM", "System"),
        ("USER", "User"),
    ]

    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="penalties",
    )
    flat = models.ForeignKey(
        Flat,
        on_delete=models.CASCADE,
        related_name="penalties",
    )
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    description = models.CharField(max_length=255)
    origin = models.CharField(
        max_length=10,
        choices=ORIGIN_CHOICES,
        default="USER",
    )
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="penalties_created",
    )
    next_penalty_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "penalties"

    def __str__(self):
        return f"Penalty {self.amount} on {self.user} ({self.type})"

    @property
    def is_system(self):
        return self.origin == "SYSTEM"

    def clean(self):
        if self.is_system and self.created_by_id is not None:
            raise ValidationError("System penalties cannot have a creating user.")
        if not self.is_system and self.created_by_id is None:
            raise ValidationError("Manual penalties must record who created them.")


# =========================
# PenaltySettings Model
# =========================
class PenaltySettingsManager(models.Manager):
    """Persistence contract used by the penalty scheduler and settings API."""

    def get_for_flat(self, flat_id):
        return (
            self.filter(flat_id=flat_id)
            .prefetch_related("selected_users")
            .first()
        )

    def mark_applied(self, flat_id, timestamp):
        self.filter(flat_id=flat_id).update(last_penalty_applied_at=timestamp)

    @transaction.atomic
    def update_for_flat(self, flat_id, patch, updated_by=None):
        patch = dict(patch)
        selected_users = patch.pop("selected_users", None)

        penalty_settings, _ = self.select_for_update().get_or_create(flat_id=flat_id)
        for field, value in patch.items():
            setattr(penalty_settings, field, value)
        penalty_settings.updated_by = updated_by
        penalty_settings.full_clean(exclude=["flat"])
        penalty_settings.save()

        if selected_users is not None:
            user_ids = [getattr(user, "pk", user) for user in selected_users]
            in_flat = get_user_model().objects.filter(flat_id=flat_id, pk__in=user_ids)
            if in_flat.count() != len(set(user_ids)):
                raise ValidationError(
                    {"selected_users": "Selected users must belong to this flat."}
                )
            penalty_settings.selected_users.set(in_flat)

        return penalty_settings


class PenaltySettings(models.Model):
    flat = models.OneToOneField(
        Flat,
        on_delete=models.CASCADE,
        related_name="penalty_settings",
    )
    contribution_penalty_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=DEFAULT_CONTRIBUTION_PENALTY_PERCENTAGE,
        validators=[
            MinValueValidator(Decimal("0.01")),
            MaxValueValidator(Decimal("100")),
        ],
        help_text="Percentage of the flat's total entries charged per deficit",
    )
    warning_period_days = models.PositiveIntegerField(
        default=DEFAULT_WARNING_PERIOD_DAYS,
        validators=[MinValueValidator(1)],
        help_text="Days between penalty evaluations",
    )
    selected_users = models.ManyToManyField(
        User,
        blank=True,
        related_name="penalty_selections",
        help_text="Users subject to penalties. Empty means everyone.",
    )
    last_penalty_applied_at = models.DateTimeField(null=True, blank=True)
    updated_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="penalty_settings_updated",
    )
    updated_at = models.DateTimeField(auto_now=True)

    objects = PenaltySettingsManager()

    class Meta:
        verbose_name_plural = "penalty settings"

    def __str__(self):
        return f"Penalty settings for {self.flat}"

    @property
    def warning_period(self):
        return timedelta(days=self.warning_period_days)

    def next_penalty_due_at(self):
        if self.last_penalty_applied_at is None:
            return None
        return self.last_penalty_applied_at + self.warning_period

    def is_due(self, now=None):
        due_at = self.next_penalty_due_at()
        if due_at is None:
            return True
        return (now or timezone.now()) >= due_at

    def clean(self):
        if self.warning_period_days is not None and self.warning_period_days < 1:
            raise ValidationError({"warning_period_days": "Warning period must be at least one day."})
        percentage = self.contribution_penalty_percentage
        if percentage is not None and not (Decimal("0") < percentage <= Decimal("100")):
            raise ValidationError(
                {"contribution_penalty_percentage": "Percentage must be greater than 0 and at most 100."}
            )

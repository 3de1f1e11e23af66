from django.contrib.auth.models import AbstractUser
from django.db import models

from flats.models import Flat
from .managers import UserManager


class User(AbstractUser):
    username = None

    email = models.EmailField(unique=True)
    name = models.CharField(max_length=150)

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    ROLE_CHOICES = (
        ("ADMIN", "Admin"),
        ("CO_ADMIN", "Co-Admin"),
        ("USER", "User"),
    )

    STATUS_CHOICES = (
        ("PENDING", "Pending"),
        ("ACTIVE", "Active"),
        ("DEACTIVATED", "Deactivated"),
    )

    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default="USER")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="PENDING")
    flat = models.ForeignKey(
        Flat,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="members",
    )

    objects = UserManager()

    @property
    def is_flat_admin(self):
        return self.role in ("ADMIN", "CO_ADMIN")

    @property
    def is_active_flatmate(self):
        return self.is_active and self.status == "ACTIVE"

    def __str__(self):
        return self.name or self.email

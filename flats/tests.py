import logging
from decimal import Decimal

from django.conf import settings
from django.contrib.auth import get_user_model
from django.test import SimpleTestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from finance.models import Entry
from .models import Flat

User = get_user_model()


class FlatAPITests(APITestCase):
    def setUp(self):
        self.flat = Flat.objects.create(name="Sunny Flat", flat_username="sunny")
        self.admin = User.objects.create_user(
            email="admin@roomie.test",
            password="pass123",
            name="Ada",
            role="ADMIN",
            status="ACTIVE",
            flat=self.flat,
        )
        self.member = User.objects.create_user(
            email="member@roomie.test",
            password="pass123",
            name="Ben",
            status="ACTIVE",
            flat=self.flat,
        )
        other_flat = Flat.objects.create(name="Other Flat", flat_username="other")
        User.objects.create_user(
            email="stranger@roomie.test",
            password="pass123",
            name="Cy",
            status="ACTIVE",
            flat=other_flat,
        )

    def test_current_flat_shows_entry_total(self):
        Entry.objects.create(name="Gas", amount=Decimal("120"), status="APPROVED", user=self.member, flat=self.flat)
        Entry.objects.create(name="Old", amount=Decimal("80"), user=self.member, flat=self.flat, is_deleted=True)
        self.client.force_authenticate(user=self.member)

        response = self.client.get(reverse("current-flat"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["flat_username"], "sunny")
        self.assertEqual(Decimal(str(response.data["total_entries"])), Decimal("120"))

    def test_only_admin_can_update_flat(self):
        self.client.force_authenticate(user=self.member)
        response = self.client.patch(reverse("current-flat"), {"name": "Mine now"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.admin)
        response = self.client.patch(reverse("current-flat"), {"min_approval_amount": "500.00"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.flat.refresh_from_db()
        self.assertEqual(self.flat.min_approval_amount, Decimal("500.00"))

    def test_members_lists_only_own_flat(self):
        self.client.force_authenticate(user=self.member)

        response = self.client.get(reverse("flat-members"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row["name"] for row in response.data], ["Ada", "Ben"])


class LoggingConfigTests(SimpleTestCase):
    def test_every_app_logs_at_configured_level(self):
        expected = logging.getLevelName(settings.LOG_LEVEL)
        for app in ("accounts", "flats", "finance", "notifications"):
            with self.subTest(app=app):
                self.assertEqual(logging.getLogger(app).level, expected)
                self.assertTrue(logging.getLogger(app).handlers)

    def test_root_logger_has_a_handler(self):
        self.assertTrue(logging.getLogger().handlers)

from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from finance.models import Entry, Penalty
from flats.models import Flat
from .models import Notification
from .services import Notifier

User = get_user_model()


class NotificationTests(APITestCase):
    def setUp(self):
        self.flat = Flat.objects.create(name="Test Flat", flat_username="test-flat")
        self.user = User.objects.create_user(
            email="test@roomie.test",
            password="pass123",
            name="Test User",
            flat=self.flat,
            status="ACTIVE",
        )
        self.client.force_authenticate(user=self.user)

    def test_list_notifications(self):
        Notification.objects.create(
            recipient=self.user,
            title="Notification 1",
            message="Message 1",
        )
        Notification.objects.create(
            recipient=self.user,
            title="Notification 2",
            message="Message 2",
        )

        url = reverse("notification-list")
        response = self.client.get(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        titles = [item["title"] for item in response.data]
        self.assertIn("Notification 1", titles)
        self.assertIn("Notification 2", titles)

    def test_only_own_notifications_are_listed(self):
        other = User.objects.create_user(email="other@roomie.test", password="pass123", name="Other")
        Notification.objects.create(recipient=other, title="Private", message="Not yours")

        response = self.client.get(reverse("notification-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertNotIn("Private", [item["title"] for item in response.data])

    def test_mark_as_read(self):
        notification = Notification.objects.create(
            recipient=self.user,
            title="Unread",
            message="Read me",
            is_read=False,
        )

        url = reverse("notification-mark-read", args=[notification.id])
        response = self.client.post(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        notification.refresh_from_db()
        self.assertTrue(notification.is_read)

    def test_mark_all_as_read(self):
        Notification.objects.create(recipient=self.user, title="1", message="1")
        Notification.objects.create(recipient=self.user, title="2", message="2")

        url = reverse("notification-mark-all-read")
        response = self.client.post(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(Notification.objects.filter(recipient=self.user, is_read=False).exists())


class NotifierTests(TestCase):
    def setUp(self):
        self.flat = Flat.objects.create(name="Notifier Flat", flat_username="notifier")
        self.user = User.objects.create_user(
            email="notify@roomie.test",
            password="pass123",
            name="Nina",
            flat=self.flat,
            status="ACTIVE",
        )

    def test_send_creates_notification(self):
        notification = Notifier(category="PENALTY").send(self.user, "Hello", "World")

        self.assertEqual(notification.recipient, self.user)
        self.assertEqual(notification.category, "PENALTY")

    def test_send_swallows_storage_errors(self):
        with patch.object(Notification.objects, "create", side_effect=DatabaseError("down")):
            with self.assertLogs("notifications.services", level="ERROR"):
                self.assertIsNone(Notifier().send(self.user, "Hello", "World"))

    def test_system_and_manual_penalties_get_different_titles(self):
        system_penalty = Penalty.objects.create(
            user=self.user,
            flat=self.flat,
            type="MINIMUM_ENTRY",
            amount=Decimal("20"),
            description="Automatic penalty",
            origin="SYSTEM",
        )
        manual_penalty = Penalty.objects.create(
            user=self.user,
            flat=self.flat,
            type="DAMAGE",
            amount=Decimal("100"),
            description="Broken lamp",
            created_by=self.user,
        )
        notifier = Notifier(category="PENALTY")

        self.assertEqual(
            notifier.notify_penalty_applied(system_penalty).title,
            "Contribution Penalty Applied",
        )
        self.assertEqual(
            notifier.notify_penalty_applied(manual_penalty).title,
            "Admin Penalty Applied",
        )


class NotificationTriggerTests(TestCase):
    def setUp(self):
        self.flat = Flat.objects.create(name="Trigger Flat", flat_username="trigger")
        self.admin = User.objects.create_user(
            email="admin@roomie.test",
            password="pass123",
            name="Admin",
            role="ADMIN",
            flat=self.flat,
            status="ACTIVE",
        )
        self.user = User.objects.create_user(
            email="trigger@roomie.test",
            password="pass123",
            name="Tess",
            flat=self.flat,
            status="ACTIVE",
        )

    def test_pending_entry_alerts_admins(self):
        Entry.objects.create(
            name="Rent share",
            amount=Decimal("5000"),
            user=self.user,
            flat=self.flat,
        )

        self.assertTrue(
            Notification.objects.filter(
                recipient=self.admin,
                title="Entry Awaiting Approval",
                category="ENTRY",
            ).exists()
        )
        self.assertFalse(Notification.objects.filter(recipient=self.user).exists())

    def test_approved_entry_does_not_alert_admins(self):
        Entry.objects.create(
            name="Bread",
            amount=Decimal("40"),
            status="APPROVED",
            user=self.user,
            flat=self.flat,
        )

        self.assertFalse(Notification.objects.exists())

    def test_rejection_notifies_entry_owner(self):
        entry = Entry.objects.create(
            name="Rent share",
            amount=Decimal("5000"),
            user=self.user,
            flat=self.flat,
        )
        entry.status = "REJECTED"
        entry.save(update_fields=["status"])

        notification = Notification.objects.get(recipient=self.user)
        self.assertEqual(notification.title, "Entry Rejected")
        self.assertEqual(notification.type, "ERROR")

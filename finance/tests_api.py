from decimal import Decimal
from unittest.mock import patch

from apscheduler.schedulers.background import BackgroundScheduler
from django.apps import apps
from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import RefreshToken

from notifications.models import Notification
from .models import Entry, Penalty, PenaltySettings
from .scheduler import PenaltyScheduler
from .tests import FlatTestMixin

User = get_user_model()


class FinanceAPITestCase(FlatTestMixin, APITestCase):
    def setUp(self):
        backend = BackgroundScheduler(timezone="UTC")
        backend.start(paused=True)
        self.addCleanup(backend.shutdown, wait=False)
        self.scheduler = PenaltyScheduler(backend)
        patcher = patch.object(
            apps.get_app_config("finance"),
            "penalty_scheduler",
            self.scheduler,
        )
        patcher.start()
        self.addCleanup(patcher.stop)

        self.flat = self.create_flat()
        self.admin = self.create_user(self.flat, "admin@roomie.test", role="ADMIN")
        self.member = self.create_user(self.flat, "member@roomie.test")

    def login(self, user):
        refresh = RefreshToken.for_user(user)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")


class PenaltySettingsAPITests(FinanceAPITestCase):
    def test_get_returns_404_when_unconfigured(self):
        self.login(self.member)
        response = self.client.get(reverse("penalty-settings"))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_admin_update_creates_settings_and_arms_scheduler(self):
        self.login(self.admin)

        response = self.client.patch(
            reverse("penalty-settings"),
            {"contribution_penalty_percentage": "5.00", "warning_period_days": 7},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["warning_period_days"], 7)
        self.assertEqual(response.data["updated_by"], self.admin.id)
        self.assertIsNotNone(response.data["last_penalty_applied_at"])
        self.assertTrue(self.scheduler.is_scheduled(self.flat.pk))

    def test_update_rearms_with_new_period(self):
        PenaltySettings.objects.create(flat=self.flat, warning_period_days=7)
        self.scheduler.setup(self.flat.pk)
        self.login(self.admin)

        self.client.patch(
            reverse("penalty-settings"),
            {"warning_period_days": 3},
            format="json",
        )

        jobs = self.scheduler.scheduler.get_jobs()
        self.assertEqual(len(jobs), 1)
        self.assertEqual(jobs[0].trigger.interval.days, 3)

    def test_member_cannot_update_settings(self):
        self.login(self.member)

        response = self.client.patch(
            reverse("penalty-settings"),
            {"warning_period_days": 1},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(PenaltySettings.objects.exists())

    def test_invalid_values_are_rejected(self):
        self.login(self.admin)

        response = self.client.patch(
            reverse("penalty-settings"),
            {"warning_period_days": 0, "contribution_penalty_percentage": "150"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("warning_period_days", response.data)
        self.assertIn("contribution_penalty_percentage", response.data)

    def test_selected_users_from_another_flat_are_rejected(self):
        outsider = self.create_user(self.create_flat("flat-two"), "out@roomie.test")
        self.login(self.admin)

        response = self.client.patch(
            reverse("penalty-settings"),
            {"selected_users": [outsider.id]},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("selected_users", response.data)

    def test_selected_users_are_saved(self):
        self.login(self.admin)

        response = self.client.patch(
            reverse("penalty-settings"),
            {"selected_users": [self.member.id]},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["selected_users"], [self.member.id])


class PenaltyRunAPITests(FinanceAPITestCase):
    def setUp(self):
        super().setUp()
        self.add_entry(self.admin, "300")
        self.add_entry(self.member, "100")
        PenaltySettings.objects.create(
            flat=self.flat,
            contribution_penalty_percentage=Decimal("5"),
            warning_period_days=7,
        )

    def test_admin_run_now_applies_penalties(self):
        self.login(self.admin)

        response = self.client.post(reverse("penalty-run"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["applied"])
        self.assertEqual(response.data["penalties_created"], 1)
        penalty = Penalty.objects.get()
        self.assertEqual(penalty.user, self.member)
        self.assertEqual(penalty.amount, Decimal("20"))

    def test_member_cannot_run_now(self):
        self.login(self.member)
        response = self.client.post(reverse("penalty-run"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_contribution_status_reports_fair_share(self):
        self.login(self.member)

        response = self.client.get(reverse("contribution-status"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["fair_share"], "200.00")
        self.assertEqual(response.data["total_amount"], "400.00")
        by_user = {row["user_id"]: row for row in response.data["members"]}
        self.assertEqual(by_user[self.member.id]["deficit"], "100.00")
        self.assertEqual(by_user[self.admin.id]["deficit"], "0.00")


class EntryAPITests(FinanceAPITestCase):
    def test_small_entry_is_approved_immediately(self):
        self.login(self.member)

        response = self.client.post(
            reverse("entry-list"),
            {"name": "Milk", "amount": "50.00"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["status"], "APPROVED")
        self.assertEqual(response.data["user"], self.member.id)

    def test_large_entry_waits_for_approval_and_alerts_admins(self):
        self.login(self.member)

        response = self.client.post(
            reverse("entry-list"),
            {"name": "Electricity bill", "amount": "1200.00"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["status"], "PENDING")
        self.assertTrue(
            Notification.objects.filter(
                recipient=self.admin,
                title="Entry Awaiting Approval",
            ).exists()
        )

    def test_admin_approves_pending_entry(self):
        entry = self.add_entry(self.member, "1200")
        self.login(self.admin)

        response = self.client.post(reverse("entry-approve", args=[entry.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        entry.refresh_from_db()
        self.assertEqual(entry.status, "APPROVED")
        self.assertTrue(
            Notification.objects.filter(recipient=self.member, title="Entry Approved").exists()
        )

    def test_member_cannot_reject_entries(self):
        entry = self.add_entry(self.member, "1200")
        self.login(self.member)

        response = self.client.post(reverse("entry-reject", args=[entry.id]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        entry.refresh_from_db()
        self.assertEqual(entry.status, "PENDING")

    def test_delete_is_soft(self):
        entry = self.add_entry(self.member, "80")
        self.login(self.member)

        response = self.client.delete(reverse("entry-detail", args=[entry.id]))

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        entry.refresh_from_db()
        self.assertTrue(entry.is_deleted)
        self.assertIsNotNone(entry.deleted_at)

    def test_entries_from_other_flats_are_hidden(self):
        outsider = self.create_user(self.create_flat("flat-two"), "out@roomie.test")
        self.add_entry(outsider, "999")
        self.add_entry(self.member, "10")
        self.login(self.member)

        response = self.client.get(reverse("entry-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(Entry.objects.count(), 2)


class ManualPenaltyAPITests(FinanceAPITestCase):
    def test_admin_creates_manual_penalty(self):
        self.login(self.admin)

        response = self.client.post(
            reverse("penalty-list"),
            {
                "user": self.member.id,
                "type": "DAMAGE",
                "amount": "250.00",
                "description": "Broken chair",
            },
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        penalty = Penalty.objects.get()
        self.assertEqual(penalty.origin, "USER")
        self.assertEqual(penalty.created_by, self.admin)
        self.assertEqual(penalty.flat, self.flat)
        self.assertTrue(
            Notification.objects.filter(
                recipient=self.member,
                title="Admin Penalty Applied",
            ).exists()
        )

    def test_member_cannot_create_penalty(self):
        self.login(self.member)

        response = self.client.post(
            reverse("penalty-list"),
            {"user": self.admin.id, "type": "OTHER", "amount": "10.00", "description": "Nope"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Penalty.objects.exists())

    def test_cannot_penalise_user_in_another_flat(self):
        outsider = self.create_user(self.create_flat("flat-two"), "out@roomie.test")
        self.login(self.admin)

        response = self.client.post(
            reverse("penalty-list"),
            {"user": outsider.id, "type": "OTHER", "amount": "10.00", "description": "Not yours"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("user", response.data)

    def test_members_see_flat_penalties(self):
        Penalty.objects.create(
            user=self.member,
            flat=self.flat,
            type="MINIMUM_ENTRY",
            amount=Decimal("20"),
            description="Automatic",
            origin="SYSTEM",
        )
        self.login(self.member)

        response = self.client.get(reverse("penalty-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["origin"], "SYSTEM")
        self.assertIsNone(response.data[0]["created_by"])


class FlatlessSuperuserAPITests(FinanceAPITestCase):
    def setUp(self):
        super().setUp()
        self.root = User.objects.create_superuser(
            email="root@roomie.test",
            password="pass123",
        )
        self.login(self.root)

    def test_contribution_status_is_forbidden(self):
        response = self.client.get(reverse("contribution-status"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_settings_update_is_forbidden(self):
        response = self.client.patch(
            reverse("penalty-settings"),
            {"warning_period_days": 5},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(PenaltySettings.objects.exists())

    def test_entry_creation_is_forbidden(self):
        response = self.client.post(
            reverse("entry-list"),
            {"name": "Snacks", "amount": "20.00"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Entry.objects.exists())

from types import SimpleNamespace

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from flats.models import Flat
from .permissions import IsActiveFlatmate, IsFlatAdmin

User = get_user_model()


class UserManagerTests(TestCase):
    def setUp(self):
        self.flat = Flat.objects.create(name="Manager Flat", flat_username="manager-flat")

    def test_create_user_normalizes_email(self):
        user = User.objects.create_user(email="Someone@Example.COM", password="pass123", name="Someone")

        self.assertEqual(user.email, "someone@example.com")
        self.assertTrue(user.check_password("pass123"))
        self.assertEqual(user.role, "USER")
        self.assertEqual(user.status, "PENDING")

    def test_create_user_requires_email(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email="", password="pass123")

    def test_create_superuser_is_active_admin(self):
        admin = User.objects.create_superuser(email="root@roomie.test", password="pass123")

        self.assertTrue(admin.is_superuser)
        self.assertEqual(admin.role, "ADMIN")
        self.assertEqual(admin.status, "ACTIVE")

    def test_active_in_flat_excludes_pending_and_deactivated(self):
        active = User.objects.create_user(
            email="active@roomie.test", password="x", flat=self.flat, status="ACTIVE",
        )
        User.objects.create_user(
            email="pending@roomie.test", password="x", flat=self.flat, status="PENDING",
        )
        User.objects.create_user(
            email="gone@roomie.test", password="x", flat=self.flat, status="DEACTIVATED",
        )
        User.objects.create_user(
            email="disabled@roomie.test", password="x", flat=self.flat, status="ACTIVE", is_active=False,
        )

        self.assertEqual(list(User.objects.active_in_flat(self.flat.pk)), [active])


class FlatPermissionTests(TestCase):
    def setUp(self):
        self.flat = Flat.objects.create(name="Perm Flat", flat_username="perm-flat")

    def request_for(self, **fields):
        fields.setdefault("status", "ACTIVE")
        fields.setdefault("flat", self.flat)
        user = User.objects.create_user(
            email=f"{fields.get('role', 'user').lower()}-{fields['status'].lower()}@roomie.test",
            password="pass123",
            **fields,
        )
        return SimpleNamespace(user=user)

    def test_co_admin_is_flat_admin(self):
        request = self.request_for(role="CO_ADMIN")
        self.assertTrue(IsFlatAdmin().has_permission(request, None))

    def test_regular_user_is_not_flat_admin(self):
        request = self.request_for(role="USER")
        self.assertFalse(IsFlatAdmin().has_permission(request, None))
        self.assertTrue(IsActiveFlatmate().has_permission(request, None))

    def test_pending_user_is_not_an_active_flatmate(self):
        request = self.request_for(role="ADMIN", status="PENDING")
        self.assertFalse(IsActiveFlatmate().has_permission(request, None))

    def test_user_without_flat_is_rejected(self):
        request = self.request_for(role="ADMIN", flat=None)
        self.assertFalse(IsFlatAdmin().has_permission(request, None))


class TokenLoginTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            email="login@roomie.test",
            password="StrongPass123!",
            name="Lou",
            status="ACTIVE",
        )

    def test_login_with_email_returns_token_pair(self):
        response = self.client.post(
            reverse("token-obtain-pair"),
            {"email": "login@roomie.test", "password": "StrongPass123!"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("access", response.data)
        self.assertIn("refresh", response.data)

    def test_login_with_wrong_password_fails(self):
        response = self.client.post(
            reverse("token-obtain-pair"),
            {"email": "login@roomie.test", "password": "wrong"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class SuperuserPermissionTests(TestCase):
    def test_superuser_without_flat_is_rejected(self):
        root = User.objects.create_superuser(email="root@roomie.test", password="pass123")
        request = SimpleNamespace(user=root)

        self.assertFalse(IsFlatAdmin().has_permission(request, None))
        self.assertFalse(IsActiveFlatmate().has_permission(request, None))

    def test_superuser_with_flat_bypasses_role(self):
        flat = Flat.objects.create(name="Root Flat", flat_username="root-flat")
        root = User.objects.create_superuser(
            email="root@roomie.test",
            password="pass123",
            flat=flat,
            role="USER",
        )

        self.assertTrue(IsFlatAdmin().has_permission(SimpleNamespace(user=root), None))

import logging

from django.apps import apps
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import serializers, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsActiveFlatmate, IsFlatAdmin
from notifications.services import Notifier
from .models import Entry, Penalty, PenaltySettings
from .serializers import (
    ContributionStatusSerializer,
    EntrySerializer,
    PenaltyRunSerializer,
    PenaltySerializer,
    PenaltySettingsSerializer,
)
from .services import flat_contribution_summary

logger = logging.getLogger(__name__)


def get_penalty_scheduler():
    return apps.get_app_config("finance").penalty_scheduler


# =========================
# Entries
# =========================
class EntryViewSet(viewsets.ModelViewSet):
    serializer_class = EntrySerializer
    http_method_names = ["get", "post", "patch", "delete", "head", "options"]

    def get_permissions(self):
        permissions = [IsAuthenticated(), IsActiveFlatmate()]
        if self.action in ("approve", "reject", "partial_update"):
            permissions.append(IsFlatAdmin())
        return permissions

    def get_queryset(self):
        return Entry.objects.filter(
            flat_id=self.request.user.flat_id,
            is_deleted=False,
        ).select_related("user")

    def perform_create(self, serializer):
        user = self.request.user
        amount = serializer.validated_data["amount"]

        # Admin entries and small amounts skip the approval queue.
        if user.is_flat_admin or amount < user.flat.min_approval_amount:
            entry_status = "APPROVED"
        else:
            entry_status = "PENDING"

        serializer.save(user=user, flat=user.flat, status=entry_status)

    def destroy(self, request, *args, **kwargs):
        entry = self.get_object()
        if entry.user_id != request.user.id and not request.user.is_flat_admin:
            return Response(
                {"detail": "You can only delete your own entries."},
                status=status.HTTP_403_FORBIDDEN,
            )

        entry.soft_delete()
        return Response(status=status.HTTP_204_NO_CONTENT)

    def _review(self, new_status):
        entry = self.get_object()
        if entry.status != "PENDING":
            return Response(
                {"detail": "Only pending entries can be reviewed."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        entry.status = new_status
        entry.save(update_fields=["status"])
        return Response(EntrySerializer(entry).data)

    @action(detail=True, methods=["post"])
    def approve(self, request, pk=None):
        return self._review("APPROVED")

    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        return self._review("REJECTED")


# =========================
# Penalties
# =========================
class PenaltyViewSet(viewsets.ModelViewSet):
    serializer_class = PenaltySerializer
    http_method_names = ["get", "post", "patch", "delete", "head", "options"]

    def get_permissions(self):
        permissions = [IsAuthenticated(), IsActiveFlatmate()]
        if self.action not in ("list", "retrieve"):
            permissions.append(IsFlatAdmin())
        return permissions

    def get_queryset(self):
        queryset = Penalty.objects.filter(
            flat_id=self.request.user.flat_id,
        ).select_related("user", "created_by")

        user_id = self.request.query_params.get("user")
        if user_id:
            queryset = queryset.filter(user_id=user_id)
        return queryset

    def perform_create(self, serializer):
        actor = self.request.user
        penalty = serializer.save(
            flat=actor.flat,
            origin="USER",
            created_by=actor,
        )
        logger.info(f"Manual penalty {penalty.pk} of {penalty.amount} applied to user {penalty.user_id} by {actor.pk}")

        Notifier(category="PENALTY").notify_penalty_applied(penalty)


# =========================
# Penalty Settings
# =========================
class PenaltySettingsView(APIView):
    """
    Read or update the caller's flat penalty policy.

    Updating re-arms the flat's scheduled penalty check with the new period.
    """

    def get_permissions(self):
        if self.request.method == "GET":
            return [IsAuthenticated(), IsActiveFlatmate()]
        return [IsAuthenticated(), IsFlatAdmin()]

    def get(self, request):
        penalty_settings = PenaltySettings.objects.get_for_flat(request.user.flat_id)
        if penalty_settings is None:
            raise NotFound("Penalty settings have not been configured for this flat.")
        return Response(PenaltySettingsSerializer(penalty_settings).data)

    def patch(self, request):
        flat_id = request.user.flat_id
        serializer = PenaltySettingsSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        try:
            penalty_settings = PenaltySettings.objects.update_for_flat(
                flat_id,
                serializer.validated_data,
                updated_by=request.user,
            )
        except DjangoValidationError as exc:
            raise serializers.ValidationError(
                exc.message_dict if hasattr(exc, "error_dict") else exc.messages
            )

        scheduler = get_penalty_scheduler()
        scheduler.clear(flat_id)
        scheduler.setup(flat_id)

        penalty_settings.refresh_from_db()
        return Response(PenaltySettingsSerializer(penalty_settings).data)


class PenaltyRunView(APIView):
    """Admin "run now": evaluate the flat immediately, ignoring the warning period."""

    permission_classes = [IsAuthenticated, IsFlatAdmin]

    def post(self, request):
        flat_id = request.user.flat_id
        results = get_penalty_scheduler().trigger_manual(flat_id)
        result = results.get(flat_id)
        if result is None:
            return Response(
                {"detail": "Penalty check failed. See server logs."},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response(PenaltyRunSerializer(result).data)


# =========================
# Contribution Status
# =========================
class ContributionStatusView(APIView):
    permission_classes = [IsAuthenticated, IsActiveFlatmate]

    def get(self, request):
        summary = flat_contribution_summary(request.user.flat)
        return Response(ContributionStatusSerializer(summary).data)

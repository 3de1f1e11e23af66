from django.urls import path
from rest_framework.routers import DefaultRouter

from .views import (
    ContributionStatusView,
    EntryViewSet,
    PenaltyRunView,
    PenaltySettingsView,
    PenaltyViewSet,
)

router = DefaultRouter()
router.register("entries", EntryViewSet, basename="entry")
router.register("penalties", PenaltyViewSet, basename="penalty")

urlpatterns = [
    path("penalty-settings/", PenaltySettingsView.as_view(), name="penalty-settings"),
    path("penalty-settings/run/", PenaltyRunView.as_view(), name="penalty-run"),
    path("contribution-status/", ContributionStatusView.as_view(), name="contribution-status"),
] + router.urls

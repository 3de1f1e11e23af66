from django.urls import path
from .views import CurrentFlatView, FlatMemberListView

urlpatterns = [
    path("current/", CurrentFlatView.as_view(), name="current-flat"),
    path("members/", FlatMemberListView.as_view(), name="flat-members"),
]

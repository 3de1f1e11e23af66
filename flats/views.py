from rest_framework import generics, permissions
from rest_framework.exceptions import NotFound
from django.contrib.auth import get_user_model

from accounts.permissions import IsActiveFlatmate, IsFlatAdmin
from .serializers import FlatSerializer, FlatMemberSerializer

User = get_user_model()


class CurrentFlatView(generics.RetrieveUpdateAPIView):
    serializer_class = FlatSerializer

    def get_permissions(self):
        if self.request.method in permissions.SAFE_METHODS:
            return [permissions.IsAuthenticated(), IsActiveFlatmate()]
        return [permissions.IsAuthenticated(), IsFlatAdmin()]

    def get_object(self):
        flat = self.request.user.flat
        if flat is None:
            raise NotFound("You do not belong to a flat.")
        return flat


class FlatMemberListView(generics.ListAPIView):
    serializer_class = FlatMemberSerializer
    permission_classes = [permissions.IsAuthenticated, IsActiveFlatmate]

    def get_queryset(self):
        return User.objects.filter(flat=self.request.user.flat).order_by("name")

from rest_framework import serializers
from django.db.models import Sum
from django.contrib.auth import get_user_model
from .models import Flat

User = get_user_model()


class FlatSerializer(serializers.ModelSerializer):
    total_entries = serializers.SerializerMethodField()

    class Meta:
        model = Flat
        fields = (
            "id",
            "name",
            "flat_username",
            "min_approval_amount",
            "created_at",
            "total_entries",
        )
        read_only_fields = ("flat_username", "created_at")

    def get_total_entries(self, obj):
        return (
            obj.entries.filter(is_deleted=False).aggregate(
                total=Sum("amount")
            )["total"]
            or 0.0
        )


class FlatMemberSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ("id", "name", "email", "role", "status", "date_joined")

from rest_framework import serializers
from django.contrib.auth import get_user_model
from .models import Entry, Penalty, PenaltySettings

User = get_user_model()


class EntrySerializer(serializers.ModelSerializer):
    user_name = serializers.CharField(source="user.name", read_only=True)

    class Meta:
        model = Entry
        fields = (
            "id",
            "name",
            "amount",
            "date_time",
            "status",
            "user",
            "user_name",
            "flat",
        )
        read_only_fields = ("status", "user", "flat")

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than zero.")
        return value


class PenaltySerializer(serializers.ModelSerializer):
    user = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())

    class Meta:
        model = Penalty
        fields = (
            "id",
            "user",
            "flat",
            "type",
            "amount",
            "description",
            "origin",
            "created_by",
            "next_penalty_date",
            "created_at",
        )
        read_only_fields = ("flat", "origin", "created_by", "created_at")

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Amount must be greater than zero.")
        return value

    def validate_user(self, value):
        request = self.context.get("request")
        if request and value.flat_id != request.user.flat_id:
            raise serializers.ValidationError("User is not a member of your flat.")
        return value


class PenaltySettingsSerializer(serializers.ModelSerializer):
    selected_users = serializers.PrimaryKeyRelatedField(
        queryset=User.objects.all(),
        many=True,
        required=False,
    )
    next_penalty_due_at = serializers.SerializerMethodField()

    class Meta:
        model = PenaltySettings
        fields = (
            "flat",
            "contribution_penalty_percentage",
            "warning_period_days",
            "selected_users",
            "last_penalty_applied_at",
            "next_penalty_due_at",
            "updated_by",
            "updated_at",
        )
        read_only_fields = (
            "flat",
            "last_penalty_applied_at",
            "updated_by",
            "updated_at",
        )

    def validate_warning_period_days(self, value):
        if value < 1:
            raise serializers.ValidationError("Warning period must be at least one day.")
        return value

    def get_next_penalty_due_at(self, obj):
        due_at = obj.next_penalty_due_at()
        return serializers.DateTimeField().to_representation(due_at) if due_at else None


class MemberContributionSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(source="user.pk")
    name = serializers.CharField(source="user.name")
    contribution = serializers.DecimalField(max_digits=12, decimal_places=2)
    deficit = serializers.DecimalField(max_digits=12, decimal_places=2)
    percentage = serializers.DecimalField(max_digits=7, decimal_places=1)


class ContributionStatusSerializer(serializers.Serializer):
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    fair_share = serializers.DecimalField(max_digits=12, decimal_places=2)
    user_count = serializers.IntegerField()
    members = MemberContributionSerializer(many=True)


class PenaltyRunSerializer(serializers.Serializer):
    flat_id = serializers.IntegerField()
    applied = serializers.BooleanField()
    penalties_created = serializers.SerializerMethodField()
    next_due_at = serializers.DateTimeField(allow_null=True)
    skipped_reason = serializers.CharField(allow_blank=True)

    def get_penalties_created(self, obj):
        return len(obj.penalties)

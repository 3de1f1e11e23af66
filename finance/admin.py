from django.contrib import admin
from .models import Entry, Penalty, PenaltySettings


@admin.register(Entry)
class EntryAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "user",
        "flat",
        "amount",
        "status",
        "date_time",
        "is_deleted",
    )
    list_filter = ("status", "flat", "is_deleted")
    search_fields = ("name", "user__email", "user__name")


@admin.register(Penalty)
class PenaltyAdmin(admin.ModelAdmin):
    list_display = ("user", "flat", "type", "amount", "origin", "created_at")
    list_filter = ("type", "origin", "flat")


@admin.register(PenaltySettings)
class PenaltySettingsAdmin(admin.ModelAdmin):
    list_display = (
        "flat",
        "contribution_penalty_percentage",
        "warning_period_days",
        "last_penalty_applied_at",
        "updated_at",
    )
    filter_horizontal = ("selected_users",)

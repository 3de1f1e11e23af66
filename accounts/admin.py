from django.contrib import admin
from .models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = (
        "email",
        "name",
        "flat",
        "role",
        "status",
    )

    list_filter = ("role", "status", "flat")
    search_fields = ("email", "name")

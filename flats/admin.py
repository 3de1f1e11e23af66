from django.contrib import admin
from .models import Flat


@admin.register(Flat)
class FlatAdmin(admin.ModelAdmin):
    list_display = ("name", "flat_username", "min_approval_amount", "created_at")
    search_fields = ("name", "flat_username")

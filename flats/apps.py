from django.apps import AppConfig


class FlatsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "flats"
    verbose_name = "Flats"

from django.apps import AppConfig


class FinanceConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "finance"
    verbose_name = "Entries & Penalties"

    def ready(self):
        from .scheduler import PenaltyScheduler

        # Built here, started by the WSGI entry point when autostart is on.
        self.penalty_scheduler = PenaltyScheduler()

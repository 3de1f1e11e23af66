"""
WSGI config for roomie.

Also the composition root for the penalty scheduler: when
PENALTY_SCHEDULER_AUTOSTART is on, the scheduler owned by the finance app is
started here once the application is loaded.
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "roomie.settings")

application = get_wsgi_application()

from django.apps import apps  # noqa: E402
from django.conf import settings  # noqa: E402

if settings.PENALTY_SCHEDULER_AUTOSTART:
    apps.get_app_config("finance").penalty_scheduler.start()

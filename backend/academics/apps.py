import atexit
import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class AcademicsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "academics"
    verbose_name = "Academic workflow"

    reconciler = None

    def ready(self):
        if not getattr(settings, "RECONCILER_AUTOSTART", False):
            return
        from .scheduler import build_reconciler

        self.reconciler = build_reconciler()
        self.reconciler.start()
        atexit.register(self.reconciler.shutdown)
        logger.info("Window reconciler started with the application")

# desk_core/apps.py

from django.apps import AppConfig
from django.conf import settings
import logging

logger = logging.getLogger(__name__)


class DeskCoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "desk_core"
    verbose_name = "Service desk"

    def ready(self):
        from . import signals  # noqa
        from .workflows.hooks import HookRegistry, install_registry

        # Bind hook identifiers once; the runtime never imports by name.
        registry = HookRegistry.from_settings(
            getattr(settings, "DESK_WORKFLOW_HOOKS", {}) or {},
            timeout=getattr(settings, "DESK_HOOK_TIMEOUT_SECONDS", 0) or 0,
        )
        install_registry(registry)
        logger.debug("Workflow hooks registered: %s", ", ".join(registry.identifiers()) or "none")

"""Delivery of completed incidents to the configured sinks.

Sinks are listed in DELIVERY_SINKS. Each sink's outcome is logged and
returned; failures never propagate and never touch the incident's status.
"""

from __future__ import annotations

import logging
from typing import Any

from django.conf import settings

from apps.notify.drivers import SINK_REGISTRY, DeliveryMessage

logger = logging.getLogger(__name__)


def sink_config(name: str) -> dict[str, Any]:
    """Resolve a sink's configuration from settings."""
    if name == "email":
        return dict(getattr(settings, "DELIVERY_EMAIL_CONFIG", {}) or {})
    if name == "spreadsheet":
        return {"path": getattr(settings, "DELIVERY_SPREADSHEET_PATH", "")}
    return {}


class DeliveryService:
    """Push an incident to every enabled sink, best-effort."""

    def __init__(self, sinks: list[str] | None = None):
        self.sinks = list(sinks if sinks is not None else getattr(settings, "DELIVERY_SINKS", []))

    def deliver(self, incident: Any) -> dict[str, dict[str, Any]]:
        if not self.sinks:
            return {}

        message = DeliveryMessage.from_incident(incident)
        results: dict[str, dict[str, Any]] = {}
        for name in self.sinks:
            sink_class = SINK_REGISTRY.get(name)
            if sink_class is None:
                logger.warning(f"Unknown delivery sink '{name}' skipped")
                results[name] = {"success": False, "error": f"Unknown sink: {name}"}
                continue
            try:
                result = sink_class().send(message, sink_config(name))
            except Exception as e:
                logger.exception(f"Delivery sink '{name}' raised for incident {message.incident_id}")
                result = {"success": False, "error": str(e)}

            if not result.get("success"):
                logger.warning(
                    f"Delivery via '{name}' failed for incident {message.incident_id}: {result.get('error')}",
                    extra={"incident_id": message.incident_id, "sink": name},
                )
            results[name] = result
        return results

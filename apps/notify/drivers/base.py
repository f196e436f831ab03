"""Base sink and data structures for incident delivery.

Sinks push a completed incident to an external destination (email,
spreadsheet). Delivery is best-effort: a sink reports failure in its result
dict and never raises into the pipeline.

Public API:
- DeliveryMessage
- BaseDeliverySink
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from apps.notify.templating import incident_context

logger = logging.getLogger(__name__)


@dataclass
class DeliveryMessage:
    """Standardized delivery payload that all sinks handle."""

    incident_id: str
    title: str
    severity: str  # "critical", "warning", "info"
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.severity = (self.severity or "").lower()
        if self.severity not in ("critical", "warning", "info"):
            self.severity = "info"

    @classmethod
    def from_incident(cls, incident: Any) -> DeliveryMessage:
        context = incident_context(incident)
        return cls(
            incident_id=context["incident_id"],
            title=(
                f"{context['severity_label'] or 'Unrated'} {context['incident_type'] or 'incident'}"
                f" routed to {context['route'] or 'pending'}"
            ),
            severity=SEVERITY_BY_LABEL.get(context["severity_label"], "info"),
            context=context,
        )


SEVERITY_BY_LABEL = {
    "Critical": "critical",
    "High": "warning",
    "Medium": "info",
    "Low": "info",
}


class BaseDeliverySink(ABC):
    """Abstract base class for delivery sinks."""

    name: str = "base"

    PRIORITY_MAP = {
        "critical": "1",
        "warning": "2",
        "info": "3",
    }

    @abstractmethod
    def validate_config(self, config: dict[str, Any]) -> bool:
        """Validate that the sink configuration is usable."""

    @abstractmethod
    def send(self, message: DeliveryMessage, config: dict[str, Any]) -> dict[str, Any]:
        """Deliver a message and return result metadata.

        Returns:
            Dictionary with keys like:
            - success: bool
            - message_id: str (if available)
            - error: str (if failed)
            - metadata: dict (any additional info)
        """

    def _handle_exception(self, e: Exception, service_name: str, action: str) -> dict[str, Any]:
        """Handle general exceptions consistently across sinks."""
        logger.exception(f"Failed to {action} {service_name}: {e}")
        return {"success": False, "error": f"Failed to {action} {service_name}: {e}"}

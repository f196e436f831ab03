"""
Delivery sinks for pushing completed incidents to external destinations.
"""

from apps.notify.drivers.base import BaseDeliverySink, DeliveryMessage
from apps.notify.drivers.email import EmailSink
from apps.notify.drivers.spreadsheet import SpreadsheetSink

__all__ = [
    "BaseDeliverySink",
    "DeliveryMessage",
    "EmailSink",
    "SINK_REGISTRY",
    "SpreadsheetSink",
]

# Registry of available delivery sinks
SINK_REGISTRY: dict[str, type[BaseDeliverySink]] = {
    "email": EmailSink,
    "spreadsheet": SpreadsheetSink,
}

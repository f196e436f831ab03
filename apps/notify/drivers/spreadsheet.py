"""Spreadsheet (CSV) delivery sink.

Appends one row per delivered incident to a CSV file that spreadsheet tools
can import or sync.
"""

import csv
import logging
import threading
from pathlib import Path
from typing import Any

from apps.notify.drivers.base import BaseDeliverySink, DeliveryMessage

logger = logging.getLogger(__name__)

COLUMNS = [
    "incident_id",
    "severity_label",
    "severity_score",
    "route",
    "summary",
    "incident_type",
    "created_at",
    "status",
]

_write_lock = threading.Lock()


class SpreadsheetSink(BaseDeliverySink):
    """Appends incident rows to a CSV export."""

    name = "spreadsheet"

    def validate_config(self, config: dict[str, Any]) -> bool:
        return bool(config.get("path"))

    def build_row(self, message: DeliveryMessage) -> list[Any]:
        ctx = message.context
        return [
            message.incident_id,
            ctx.get("severity_label", ""),
            ctx.get("severity_score", ""),
            ctx.get("route", ""),
            (ctx.get("summary") or ctx.get("text") or "")[:100],
            ctx.get("incident_type", ""),
            ctx.get("created_at", ""),
            ctx.get("status", ""),
        ]

    def send(self, message: DeliveryMessage, config: dict[str, Any]) -> dict[str, Any]:
        if not self.validate_config(config):
            return {"success": False, "error": "Invalid spreadsheet configuration (path required)"}

        path = Path(config["path"])
        try:
            with _write_lock:
                path.parent.mkdir(parents=True, exist_ok=True)
                write_header = not path.exists() or path.stat().st_size == 0
                with path.open("a", newline="", encoding="utf-8") as handle:
                    writer = csv.writer(handle)
                    if write_header:
                        writer.writerow(COLUMNS)
                    writer.writerow(self.build_row(message))
        except OSError as e:
            return self._handle_exception(e, "Spreadsheet", "append row to")

        logger.info(f"Incident {message.incident_id} appended to {path}")
        return {"success": True, "metadata": {"path": str(path)}}

"""Incident stand-ins for delivery tests."""

from datetime import datetime, timezone
from types import SimpleNamespace


def make_incident(**overrides):
    """Incident-shaped object with the fields delivery reads."""
    values = {
        "id": "6f1c2a4e-0000-4000-8000-000000000001",
        "submitter": "wallet-a",
        "text": "Water leaking from the ceiling in the library",
        "status": "completed",
        "severity_score": 30,
        "severity_label": "Medium",
        "incident_type": "infrastructure",
        "route": "LogOnly",
        "urgency": "within_24_hours",
        "assigned_team": "Facilities Management",
        "summary": "Medium severity infrastructure incident: leak in library",
        "recommended_actions": ["Dispatch maintenance"],
        "rules_triggered": ["low_severity"],
        "human_review_required": False,
        "created_at": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return SimpleNamespace(**values)

"""Jinja2 templating for delivery sinks.

Templates live in apps/notify/templates. ``.html.j2`` templates are
autoescaped; text templates are rendered as-is.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import jinja2

TEMPLATES_DIR = Path(__file__).parent / "templates"

logger = logging.getLogger(__name__)

_JINJA_ENV = jinja2.Environment(
    loader=jinja2.FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=jinja2.select_autoescape(enabled_extensions=("html.j2",), default=False),
    undefined=jinja2.ChainableUndefined,
)


def render_template(name: str, context: dict[str, Any]) -> str:
    """Render a template file by name.

    Raises:
        ValueError: If the template does not exist.
    """
    try:
        template = _JINJA_ENV.get_template(name)
    except jinja2.TemplateNotFound as e:
        raise ValueError(f"Template file not found: {name}") from e
    logger.debug("render_template: rendering %s", name)
    return template.render(**context)


def render_string(source: str, context: dict[str, Any]) -> str:
    """Render an inline template string (e.g. a subject line from config)."""
    return _JINJA_ENV.from_string(source).render(**context)


def incident_context(incident: Any) -> dict[str, Any]:
    """Build the template context for an incident."""
    return {
        "incident_id": str(incident.id),
        "submitter": incident.submitter,
        "text": incident.text,
        "status": incident.status,
        "severity_score": incident.severity_score,
        "severity_label": incident.severity_label,
        "incident_type": incident.incident_type,
        "route": incident.route,
        "urgency": incident.urgency,
        "assigned_team": incident.assigned_team,
        "summary": incident.summary or incident.text[:100],
        "recommended_actions": list(incident.recommended_actions or []),
        "rules_triggered": list(incident.rules_triggered or []),
        "human_review_required": incident.human_review_required,
        "created_at": incident.created_at.isoformat() if incident.created_at else "",
    }

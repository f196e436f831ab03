"""
Rejection, correction and reprocess operations.

Lifecycle: a reviewer rejects an incident (``failed`` with a reason),
submits corrections (``pending_reprocess``) and reprocesses it, which runs
the unchanged pipeline on the corrected inputs as a new run. Every step is
recorded; nothing in the incident's history is overwritten.
"""

from __future__ import annotations

import logging
from typing import Any

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.incidents.exceptions import InvalidTransitionError, SubmissionValidationError
from apps.incidents.models import (
    CorrectionRecord,
    Incident,
    IncidentStatus,
    IncidentType,
    RejectionRecord,
)
from apps.orchestration.concurrency import settle_all
from apps.orchestration.dtos import RunOutcome, StageError
from apps.orchestration.orchestrator import STATUS_FAILED, PipelineOrchestrator
from apps.orchestration.services import DEFAULT_PAGE_SIZE, get_incident, paginate

logger = logging.getLogger(__name__)

CORRECTION_FIELDS = ("text", "incident_type", "severity_override", "route_override", "additional_notes")

# Fields written onto the incident; the rest are recorded only.
APPLIED_FIELDS = ("text", "incident_type")

REPROCESS_SUCCESS = "success"
REPROCESS_FAILED = "failed"


def validate_corrections(corrections: Any) -> dict[str, Any]:
    """
    Raises:
        SubmissionValidationError: For unknown keys or invalid values.
    """
    if not isinstance(corrections, dict):
        raise SubmissionValidationError("corrections must be an object")

    errors = []
    unknown = sorted(set(corrections) - set(CORRECTION_FIELDS))
    if unknown:
        errors.append(f"unknown correction fields: {', '.join(unknown)}")

    text = corrections.get("text")
    if text is not None and (not isinstance(text, str) or not text.strip()):
        errors.append("text must be a non-empty string")

    incident_type = corrections.get("incident_type")
    if incident_type is not None and incident_type != "auto" and incident_type not in IncidentType.values:
        errors.append(f"incident_type must be one of {', '.join(IncidentType.values)} or auto")

    if errors:
        raise SubmissionValidationError(errors)

    cleaned = dict(corrections)
    if isinstance(text, str):
        cleaned["text"] = text.strip()
    return cleaned


def reject(
    incident_id: Any,
    reason: str,
    actor: str,
    suggested_corrections: dict[str, Any] | None = None,
) -> Incident:
    """
    Reject an incident with a reason.

    Raises:
        IncidentNotFoundError: If the incident does not exist.
        SubmissionValidationError: If the reason is empty.
        InvalidTransitionError: If the incident is processing or already rejected.
    """
    if not isinstance(reason, str) or not reason.strip():
        raise SubmissionValidationError("rejection reason is required")

    incident = get_incident(incident_id)
    previous_status = incident.status

    with transaction.atomic():
        incident.reject(reason.strip(), actor=actor, suggested_corrections=suggested_corrections)
        RejectionRecord.objects.create(
            incident=incident,
            reason=reason.strip(),
            actor=actor,
            previous_status=previous_status,
            suggested_corrections=suggested_corrections,
        )

    logger.info(
        f"Incident {incident.id} rejected by {actor}: {reason}",
        extra={"incident_id": str(incident.id), "actor": actor},
    )
    return incident


def submit_corrections(incident_id: Any, corrections: dict[str, Any], actor: str) -> Incident:
    """
    Record corrections for a rejected incident and queue it for reprocess.

    Raises:
        IncidentNotFoundError: If the incident does not exist.
        SubmissionValidationError: If the corrections are malformed.
        InvalidTransitionError: If the incident is not rejected.
    """
    cleaned = validate_corrections(corrections)
    incident = get_incident(incident_id)
    original = incident.snapshot()

    with transaction.atomic():
        incident.apply_corrections(
            {key: cleaned[key] for key in APPLIED_FIELDS if key in cleaned},
            actor=actor,
            correction_data={
                "original": original,
                "corrections": cleaned,
                "corrected_at": timezone.now().isoformat(),
                "corrected_by": actor,
            },
        )
        CorrectionRecord.objects.create(
            incident=incident,
            rejection=incident.rejections.order_by("-id").first(),
            original_snapshot=original,
            corrections=cleaned,
            actor=actor,
        )

    logger.info(
        f"Corrections submitted for incident {incident.id} by {actor}: {sorted(cleaned)}",
        extra={"incident_id": str(incident.id), "actor": actor},
    )
    return incident


def reprocess(incident_id: Any, actor: str = "system", backend: Any = None) -> RunOutcome:
    """
    Start a new run of a corrected incident.

    Raises:
        IncidentNotFoundError: If the incident does not exist.
        InvalidTransitionError: If the incident is not pending reprocess.
    """
    from apps.orchestration.backends import get_backend

    incident = get_incident(incident_id)
    incident.begin_reprocess(actor=actor)
    logger.info(
        f"Reprocessing incident {incident.id} (run {incident.run_count + 1})",
        extra={"incident_id": str(incident.id), "actor": actor},
    )
    return (backend if backend is not None else get_backend()).dispatch(incident)


def batch_reprocess_pending_corrections(
    limit: int | None = None,
    actor: str = "system",
    orchestrator: PipelineOrchestrator | None = None,
    max_concurrency: int | None = None,
) -> dict[str, Any]:
    """
    Reprocess the oldest pending incidents, up to ``limit``.

    Each incident's failure is reported on its own result entry; the call
    itself does not fail.
    """
    limit = limit or int(getattr(settings, "REPROCESS_PAGE_SIZE", 100))
    max_concurrency = max_concurrency or int(getattr(settings, "BATCH_DEFAULT_MAX_CONCURRENCY", 10))
    orchestrator = orchestrator if orchestrator is not None else PipelineOrchestrator()

    pending = list(
        Incident.objects.filter(status=IncidentStatus.PENDING_REPROCESS).order_by("updated_at")[:limit]
    )
    contexts = []
    results = []
    for incident in pending:
        try:
            incident.begin_reprocess(actor=actor)
        except InvalidTransitionError as e:
            logger.warning(f"Skipping incident {incident.id}: {e}")
            results.append({"incident_id": str(incident.id), "status": REPROCESS_FAILED, "error": str(e)})
            continue
        contexts.append(orchestrator.build_context(incident))

    logger.info(f"Reprocessing {len(contexts)} pending incidents")

    for item in settle_all(orchestrator.execute_stages, contexts, max_concurrency):
        ctx = contexts[item.index]
        if item.ok:
            outcome = item.value
        else:
            outcome = RunOutcome(
                trace_id=ctx.trace_id,
                run_id=ctx.run_id,
                incident_id=ctx.incident_id,
                status=STATUS_FAILED,
                run_number=ctx.run_number,
                final_error=StageError(error_type=type(item.error).__name__, message=str(item.error)),
            )
        outcome = orchestrator.finalize(ctx, outcome)
        if outcome.succeeded:
            results.append(
                {"incident_id": ctx.incident_id, "status": REPROCESS_SUCCESS, "result": outcome.to_dict()}
            )
        else:
            results.append(
                {
                    "incident_id": ctx.incident_id,
                    "status": REPROCESS_FAILED,
                    "error": outcome.final_error.message if outcome.final_error else "unknown error",
                }
            )

    successful = sum(1 for r in results if r["status"] == REPROCESS_SUCCESS)
    return {
        "total": len(results),
        "successful": successful,
        "failed": len(results) - successful,
        "results": results,
    }


def get_rejection_history(incident_id: Any) -> dict[str, Any]:
    """Every transition, rejection and correction of one incident, oldest first."""
    incident = get_incident(incident_id)
    return {
        "incident_id": str(incident.id),
        "status": incident.status,
        "rejection_reason": incident.rejection_reason,
        "transitions": [
            {
                "from_status": t.from_status,
                "to_status": t.to_status,
                "event": t.event,
                "actor": t.actor,
                "detail": t.detail,
                "created_at": t.created_at.isoformat(),
            }
            for t in incident.transitions.order_by("created_at", "id")
        ],
        "rejections": [
            {
                "reason": r.reason,
                "actor": r.actor,
                "previous_status": r.previous_status,
                "suggested_corrections": r.suggested_corrections,
                "created_at": r.created_at.isoformat(),
            }
            for r in incident.rejections.order_by("created_at", "id")
        ],
        "corrections": [
            {
                "corrections": c.corrections,
                "original": c.original_snapshot,
                "actor": c.actor,
                "created_at": c.created_at.isoformat(),
            }
            for c in incident.corrections.order_by("created_at", "id")
        ],
    }


def list_rejected(page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict[str, Any]:
    queryset = Incident.objects.filter(
        status=IncidentStatus.FAILED, rejection_reason__isnull=False
    ).exclude(rejection_reason="")
    return paginate(queryset.order_by("-updated_at"), page=page, limit=limit)


def list_pending(page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict[str, Any]:
    queryset = Incident.objects.filter(status=IncidentStatus.PENDING_REPROCESS)
    return paginate(queryset.order_by("updated_at"), page=page, limit=limit)

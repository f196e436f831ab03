"""
Audit stage.

``complete_run`` is the single entry point that turns a run's stage outputs
into persisted state: it writes the AuditRecord, completes the Incident and
debits the submitter, all in one transaction. Indexing the incident for
future similarity searches and pushing it to delivery sinks happen after the
transaction commits and are best-effort.

``fail_run`` is its counterpart for aborted runs.

Both the direct pipeline and the workflow-runner callback finish runs here,
and both must be called from the orchestrating thread.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.credits.ledger import BaseCreditLedger, get_credit_ledger
from apps.incidents.exceptions import IncidentNotFoundError, InvalidTransitionError
from apps.incidents.models import (
    AuditRecord,
    Incident,
    TransitionEvent,
)
from apps.orchestration.dtos import (
    AuditResult,
    DecideResult,
    IntakeResult,
    PipelineStage,
    ReviewResult,
    UnderstandResult,
)
from apps.similarity.index import SimilarityIndex, get_index

logger = logging.getLogger(__name__)


class AuditRecordBuilder:
    """Assembles the AuditRecord for one completed run."""

    def __init__(
        self,
        incident: Incident,
        trace_id: str,
        run_number: int,
        execution_backend: str = "direct",
    ):
        self.incident = incident
        self.trace_id = trace_id
        self.run_number = run_number
        self.execution_backend = execution_backend

    def final_decision(
        self,
        understand: UnderstandResult,
        decided: DecideResult,
        reviewed: ReviewResult,
    ) -> dict[str, Any]:
        fields = understand.effective_fields
        return {
            "route": decided.decision.route,
            "rules_triggered": list(decided.decision.rules_triggered),
            "severity_score": fields.severity_score,
            "severity_label": fields.severity_label,
            "incident_type": fields.incident_type,
            "urgency": understand.summary.urgency,
            "assigned_team": reviewed.assigned_team,
            "recommended_actions": list(understand.summary.recommended_actions),
            "human_review_required": reviewed.human_review_required,
            "review_passed": reviewed.review.overall_passed,
            "routing_validation_agrees": decided.validation.agrees_with_routing,
        }

    def correction_context(self, record_input: dict[str, Any]) -> dict[str, Any] | None:
        """Original and corrected snapshots when this run follows a correction."""
        latest = self.incident.transitions.order_by("-id").first()
        if latest is None or latest.event != TransitionEvent.REPROCESS_STARTED:
            return None

        correction = self.incident.corrections.select_related("rejection").order_by("-id").first()
        if correction is None:
            return None

        return {
            "correction_id": correction.pk,
            "rejection_reason": correction.rejection.reason if correction.rejection else None,
            "corrected_by": correction.actor,
            "corrections": correction.corrections,
            "original": correction.original_snapshot,
            "corrected": {
                "text": record_input["text"],
                "incident_type": record_input["declared_type"],
                "media_refs": record_input["media_refs"],
            },
        }

    def build(
        self,
        stage_results: dict[str, Any],
        previous: AuditRecord | None,
        credits_used: int,
        total_duration_ms: float,
        external_data_sources: list[str],
    ) -> AuditRecord:
        intake: IntakeResult = stage_results[PipelineStage.INTAKE]
        understand: UnderstandResult = stage_results[PipelineStage.UNDERSTAND]
        decided: DecideResult = stage_results[PipelineStage.DECIDE]
        reviewed: ReviewResult = stage_results[PipelineStage.REVIEW]

        record_input = intake.record.to_dict()
        return AuditRecord(
            incident=self.incident,
            run_number=self.run_number,
            previous_record=previous,
            batch=self.incident.batch,
            trace_id=self.trace_id,
            execution_backend=self.execution_backend,
            input_snapshot=record_input,
            stages={
                PipelineStage.INTAKE.value: intake.to_dict(),
                PipelineStage.UNDERSTAND.value: understand.to_dict(),
                PipelineStage.DECIDE.value: decided.to_dict(),
                PipelineStage.REVIEW.value: reviewed.to_dict(),
            },
            final_decision=self.final_decision(understand, decided, reviewed),
            similar_incidents=[s.to_dict() for s in decided.similar_incidents],
            correction_context=self.correction_context(record_input),
            external_data_sources=external_data_sources,
            credits_used=credits_used,
            total_duration_ms=total_duration_ms,
        )


def run_output_fields(stage_results: dict[str, Any]) -> dict[str, Any]:
    """Incident fields written by a completing run."""
    understand: UnderstandResult = stage_results[PipelineStage.UNDERSTAND]
    decided: DecideResult = stage_results[PipelineStage.DECIDE]
    reviewed: ReviewResult = stage_results[PipelineStage.REVIEW]
    fields = understand.effective_fields
    return {
        "severity_score": fields.severity_score,
        "incident_type": fields.incident_type,
        "extracted_fields": understand.fields.to_dict(),
        "summary": understand.summary.summary,
        "recommended_actions": list(understand.summary.recommended_actions),
        "urgency": understand.summary.urgency,
        "route": decided.decision.route,
        "rules_triggered": list(decided.decision.rules_triggered),
        "assigned_team": reviewed.assigned_team,
        "human_review_required": reviewed.human_review_required,
    }


def index_metadata(incident: Incident) -> dict[str, Any]:
    return {
        "incident_id": str(incident.id),
        "text": incident.text,
        "summary": incident.summary,
        "severity_score": incident.severity_score,
        "severity_label": incident.severity_label,
        "incident_type": incident.incident_type,
        "route": incident.route,
        "timestamp": timezone.now().isoformat(),
        "tags": [incident.incident_type, incident.severity_label.lower()],
    }


def _after_commit(incident: Incident, embedding: list[float], index: SimilarityIndex) -> None:
    from apps.notify.services import DeliveryService

    if any(embedding):
        try:
            index.upsert(str(incident.id), embedding, index_metadata(incident))
        except Exception:
            logger.exception(f"Similarity index upsert failed for incident {incident.id}")

    DeliveryService().deliver(incident)


def complete_run(
    incident_id: Any,
    stage_results: dict[str, Any],
    trace_id: str,
    execution_backend: str = "direct",
    total_duration_ms: float = 0.0,
    external_data_sources: list[str] | None = None,
    ledger: BaseCreditLedger | None = None,
    index: SimilarityIndex | None = None,
) -> AuditResult:
    """
    Persist a completed run.

    Raises:
        IncidentNotFoundError: If the incident does not exist.
        InvalidTransitionError: If the incident is no longer processing.
    """
    ledger = ledger if ledger is not None else get_credit_ledger()
    index = index if index is not None else get_index()
    cost = int(getattr(settings, "CREDITS_PER_INCIDENT", 1))

    result = AuditResult(started_at=timezone.now().isoformat())
    start_time = time.perf_counter()

    with transaction.atomic():
        incident = Incident.objects.select_for_update().filter(pk=incident_id).first()
        if incident is None:
            raise IncidentNotFoundError(incident_id)

        run_number = incident.run_count + 1
        previous = incident.audit_records.order_by("-run_number").first()

        debited = ledger.debit(
            incident.submitter,
            cost,
            reference=str(incident.id),
            description=f"Incident processing run {run_number}",
        )
        if not debited:
            logger.warning(
                f"Credit debit failed for {incident.submitter} on incident {incident.id}",
                extra={"trace_id": trace_id, "incident_id": str(incident.id)},
            )

        builder = AuditRecordBuilder(incident, trace_id, run_number, execution_backend)
        record = builder.build(
            stage_results,
            previous=previous,
            credits_used=cost if debited else 0,
            total_duration_ms=total_duration_ms,
            external_data_sources=external_data_sources or [],
        )
        record.save()
        incident.mark_completed(run_output_fields(stage_results))

        embedding = list(stage_results[PipelineStage.UNDERSTAND].embedding)
        transaction.on_commit(lambda: _after_commit(incident, embedding, index))

    result.audit_record_id = str(record.id)
    result.credits_used = record.credits_used
    result.debit_succeeded = debited
    result.index_scheduled = any(embedding)
    result.completed_at = timezone.now().isoformat()
    result.duration_ms = (time.perf_counter() - start_time) * 1000

    logger.info(
        f"Audit record {record.id} written for incident {incident.id} run {run_number}",
        extra={"trace_id": trace_id, "incident_id": str(incident.id), "run_number": run_number},
    )
    return result


def fail_run(incident_id: Any, error_message: str, trace_id: str = "") -> bool:
    """
    Mark a processing incident as failed.

    Returns False when the incident already left ``processing``.
    """
    incident = Incident.objects.filter(pk=incident_id).first()
    if incident is None:
        raise IncidentNotFoundError(incident_id)
    try:
        incident.mark_failed(error_message)
    except InvalidTransitionError:
        logger.warning(
            f"Incident {incident_id} is {incident.status}; failure not recorded: {error_message}",
            extra={"trace_id": trace_id, "incident_id": str(incident_id)},
        )
        return False

    logger.info(
        f"Incident {incident_id} failed: {error_message}",
        extra={"trace_id": trace_id, "incident_id": str(incident_id)},
    )
    return True

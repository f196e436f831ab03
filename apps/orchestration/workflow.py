"""
Workflow runner client and completion callback.

The runner executes the analysis stages remotely. It is started with
``POST {base_url}/workflows/{name}/execute`` and later calls back with
``(job_id, status, result)``. A completed result is expected to carry:

    {
        "extracted_fields": {...},        # required
        "summary": {...},
        "embedding": [...],
        "routing_validation": {...},
        "review": {...},
        "similar_incidents": [{"incident_id", "score", "metadata"}]
    }

The callback never trusts a remote route: the route is recomputed with the
local rules and the run is finished by the same audit stage as a direct run.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from typing import Any

from django.conf import settings
from django.utils import timezone

from apps.incidents.exceptions import (
    CollaboratorError,
    InvalidTransitionError,
    NotFoundError,
)
from apps.incidents.models import Incident, IncidentStatus
from apps.intelligence.providers.base import assigned_team
from apps.orchestration.dtos import (
    DecideResult,
    ExtractedFields,
    PipelineStage,
    ReviewOutcome,
    ReviewResult,
    RoutingValidation,
    RunOutcome,
    SimilarIncident,
    StageContext,
    StageError,
    Summary,
    UnderstandResult,
)
from apps.orchestration.orchestrator import STATUS_FAILED, STATUS_RUNNING, PipelineOrchestrator
from apps.orchestration.rules import decide, needs_human_review

logger = logging.getLogger(__name__)

CALLBACK_COMPLETED = "completed"


class WorkflowRunner(ABC):
    """Starts remote workflow jobs."""

    @abstractmethod
    def start(self, workflow_name: str, payload: dict[str, Any]) -> str:
        """Start a job and return its id."""
        raise NotImplementedError


class HttpWorkflowRunner(WorkflowRunner):
    """Workflow runner reached over its HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        callback_url: str | None = None,
        timeout: int | None = None,
    ):
        self.base_url = (base_url or getattr(settings, "WORKFLOW_RUNNER_BASE_URL", "")).rstrip("/")
        self.api_key = api_key or getattr(settings, "WORKFLOW_RUNNER_API_KEY", "")
        self.callback_url = callback_url or getattr(settings, "WORKFLOW_RUNNER_CALLBACK_URL", "")
        self.timeout = timeout or int(getattr(settings, "WORKFLOW_RUNNER_TIMEOUT_S", 60))

    def start(self, workflow_name: str, payload: dict[str, Any]) -> str:
        if not self.base_url:
            raise CollaboratorError("workflow_runner", "WORKFLOW_RUNNER_BASE_URL is not configured")

        body = json.dumps({"input": payload, "callback_url": self.callback_url}).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        request = urllib.request.Request(
            f"{self.base_url}/workflows/{workflow_name}/execute",
            data=body,
            headers=headers,
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                response_body = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else str(e)
            raise CollaboratorError("workflow_runner", f"HTTP error ({e.code}): {error_body}") from e
        except urllib.error.URLError as e:
            raise CollaboratorError("workflow_runner", f"Connection error: {e.reason}") from e

        try:
            data = json.loads(response_body)
        except json.JSONDecodeError as e:
            raise CollaboratorError("workflow_runner", f"Invalid JSON response: {response_body[:200]}") from e

        job_id = (data.get("job_id") or data.get("id")) if isinstance(data, dict) else None
        if not job_id:
            raise CollaboratorError("workflow_runner", "Response did not include a job id")
        return str(job_id)


def _similar(items: Any) -> list[SimilarIncident]:
    similar = []
    for item in items or []:
        if not isinstance(item, dict) or not item.get("incident_id"):
            continue
        score = item.get("score", item.get("similarity_score", 0.0))
        similar.append(
            SimilarIncident(
                incident_id=str(item["incident_id"]),
                score=float(score),
                metadata=dict(item.get("metadata") or {}),
            )
        )
    return similar


def _result_error(outcome: RunOutcome, message: str) -> RunOutcome:
    outcome.status = STATUS_FAILED
    outcome.final_error = StageError(
        error_type="WorkflowResultError",
        message=message,
        stage=PipelineStage.UNDERSTAND.value,
    )
    return outcome


def outcome_from_result(
    orchestrator: PipelineOrchestrator,
    ctx: StageContext,
    result: dict[str, Any],
) -> RunOutcome:
    """
    Rebuild stage results from a completed workflow job.

    A malformed result fails the run with ``WorkflowResultError`` instead of
    raising, so the incident never stays processing.
    """
    outcome = RunOutcome(
        trace_id=ctx.trace_id,
        run_id=ctx.run_id,
        incident_id=ctx.incident_id,
        status=STATUS_RUNNING,
        run_number=ctx.run_number,
        started_at=timezone.now(),
    )
    now = timezone.now().isoformat()

    extracted = result.get("extracted_fields")
    if not isinstance(extracted, dict):
        return _result_error(outcome, "Workflow result is missing extracted_fields")

    try:
        intake = orchestrator.executors[PipelineStage.INTAKE].execute(ctx)

        fields = ExtractedFields.from_dict(extracted)
        understand = UnderstandResult(
            fields=fields,
            summary=Summary.from_dict(result.get("summary") or {}),
            embedding=[float(v) for v in result.get("embedding") or []],
            effective_type=ctx.declared_type or fields.incident_type,
            started_at=now,
            completed_at=now,
        )
        effective = understand.effective_fields

        decided = DecideResult(
            decision=decide(effective),
            validation=RoutingValidation.from_dict(result.get("routing_validation") or {}),
            similar_incidents=_similar(result.get("similar_incidents")),
            started_at=now,
            completed_at=now,
        )

        review = ReviewOutcome.from_dict(result.get("review") or {})
        reviewed = ReviewResult(
            review=review,
            human_review_required=needs_human_review(effective, review, orchestrator.legacy_score_threshold),
            assigned_team=assigned_team(effective.incident_type, effective.severity_label),
            started_at=now,
            completed_at=now,
        )
    except Exception as e:
        logger.exception(
            f"Malformed workflow result: {e}",
            extra={"trace_id": ctx.trace_id, "incident_id": ctx.incident_id},
        )
        return _result_error(outcome, f"Malformed workflow result: {type(e).__name__}: {e}")

    outcome.intake = intake
    outcome.understand = understand
    outcome.decide = decided
    outcome.review = reviewed
    outcome.stages_completed = [
        PipelineStage.INTAKE.value,
        PipelineStage.UNDERSTAND.value,
        PipelineStage.DECIDE.value,
        PipelineStage.REVIEW.value,
    ]
    return outcome



def handle_workflow_callback(
    job_id: str,
    status: str,
    result: dict[str, Any] | None = None,
    orchestrator: PipelineOrchestrator | None = None,
) -> RunOutcome:
    """
    Finish the run a workflow job was carrying.

    Raises:
        NotFoundError: If no incident is waiting on ``job_id``.
        InvalidTransitionError: If that incident is no longer processing
            (for example a repeated callback).
    """
    incident = Incident.objects.filter(workflow_job_id=job_id).first()
    if incident is None:
        raise NotFoundError("Workflow job", job_id)
    if incident.status != IncidentStatus.PROCESSING:
        raise InvalidTransitionError(
            incident.pk, incident.status, "complete workflow job", f"job {job_id} already settled"
        )

    orchestrator = orchestrator if orchestrator is not None else PipelineOrchestrator()
    ctx = orchestrator.build_context(incident)
    if not isinstance(result, dict):
        result = {"error": str(result)} if result else {}

    logger.info(
        f"Workflow callback for job {job_id}: {status}",
        extra={"trace_id": ctx.trace_id, "incident_id": ctx.incident_id, "job_id": job_id},
    )

    if status == CALLBACK_COMPLETED:
        outcome = outcome_from_result(orchestrator, ctx, result)
    else:
        outcome = RunOutcome(
            trace_id=ctx.trace_id,
            run_id=ctx.run_id,
            incident_id=ctx.incident_id,
            status=STATUS_FAILED,
            run_number=ctx.run_number,
            started_at=timezone.now(),
            final_error=StageError(
                error_type="WorkflowJobFailed",
                message=f"Workflow job {job_id} {status}: {result.get('error') or 'no detail'}",
            ),
        )

    outcome.workflow_job_id = job_id
    return orchestrator.finalize(ctx, outcome, execution_backend="workflow")

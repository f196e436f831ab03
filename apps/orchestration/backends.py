"""
Execution backends.

A backend takes a processing incident and gets it through the pipeline.
``direct`` runs the stages in-process. ``workflow`` hands the run to the
external workflow runner; its callback later finishes the run through the
same audit stage (see apps.orchestration.workflow).

PIPELINE_EXECUTION_BACKEND selects the default.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from django.conf import settings
from django.utils import timezone

from apps.incidents.exceptions import CollaboratorError
from apps.incidents.models import Incident
from apps.orchestration.audit import fail_run
from apps.orchestration.dtos import RunOutcome, StageError
from apps.orchestration.orchestrator import (
    STATUS_DISPATCHED,
    STATUS_FAILED,
    PipelineOrchestrator,
    signal_tags,
)
from apps.orchestration.signals import emit_pipeline_completed, emit_pipeline_started
from apps.orchestration.workflow import HttpWorkflowRunner, WorkflowRunner

logger = logging.getLogger(__name__)


class PipelineBackend(ABC):
    """Runs (or schedules) one pipeline run for a processing incident."""

    name: str = "base"

    @abstractmethod
    def dispatch(self, incident: Incident) -> RunOutcome:
        raise NotImplementedError


class DirectPipelineBackend(PipelineBackend):
    """Runs every stage in this process and returns the final outcome."""

    name = "direct"

    def __init__(self, orchestrator: PipelineOrchestrator | None = None):
        self.orchestrator = orchestrator if orchestrator is not None else PipelineOrchestrator()

    def dispatch(self, incident: Incident) -> RunOutcome:
        return self.orchestrator.run(incident)


class WorkflowPipelineBackend(PipelineBackend):
    """
    Starts the run on the workflow runner and returns a DISPATCHED outcome.

    If the runner cannot be reached the incident fails immediately.
    """

    name = "workflow"

    def __init__(
        self,
        runner: WorkflowRunner | None = None,
        workflow_name: str | None = None,
        orchestrator: PipelineOrchestrator | None = None,
    ):
        self.runner = runner if runner is not None else HttpWorkflowRunner()
        self.workflow_name = workflow_name or getattr(
            settings, "PIPELINE_WORKFLOW_NAME", "incident_intake_v1"
        )
        self._orchestrator = orchestrator

    @property
    def orchestrator(self) -> PipelineOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = PipelineOrchestrator()
        return self._orchestrator

    def workflow_input(self, incident: Incident) -> dict:
        return {
            "incident_id": str(incident.id),
            "text": incident.text,
            "media_refs": incident.media_refs,
            "submitter": incident.submitter,
            "incident_type": incident.declared_type or "auto",
            "run_number": incident.run_count + 1,
        }

    def dispatch(self, incident: Incident) -> RunOutcome:
        ctx = self.orchestrator.build_context(incident)
        outcome = RunOutcome(
            trace_id=ctx.trace_id,
            run_id=ctx.run_id,
            incident_id=ctx.incident_id,
            status=STATUS_DISPATCHED,
            run_number=ctx.run_number,
            started_at=timezone.now(),
        )
        emit_pipeline_started(signal_tags(ctx))

        try:
            job_id = self.runner.start(self.workflow_name, self.workflow_input(incident))
        except CollaboratorError as e:
            logger.error(
                f"Workflow dispatch failed for incident {incident.id}: {e}",
                extra={"trace_id": ctx.trace_id, "incident_id": ctx.incident_id},
            )
            fail_run(incident.id, str(e), trace_id=ctx.trace_id)
            outcome.status = STATUS_FAILED
            outcome.final_error = StageError(error_type=type(e).__name__, message=str(e))
            outcome.completed_at = timezone.now()
            emit_pipeline_completed(signal_tags(ctx), 0.0, outcome.status)
            return outcome

        incident.attach_workflow_job(job_id)
        outcome.workflow_job_id = job_id
        logger.info(
            f"Incident {incident.id} dispatched to workflow '{self.workflow_name}' as job {job_id}",
            extra={"trace_id": ctx.trace_id, "incident_id": ctx.incident_id, "job_id": job_id},
        )
        return outcome


BACKENDS: dict[str, type[PipelineBackend]] = {
    "direct": DirectPipelineBackend,
    "workflow": WorkflowPipelineBackend,
}


def get_backend(name: str | None = None) -> PipelineBackend:
    """
    Build the backend named by ``name`` or PIPELINE_EXECUTION_BACKEND.

    Raises:
        KeyError: If the backend name is not registered.
    """
    name = name or getattr(settings, "PIPELINE_EXECUTION_BACKEND", "direct")
    if name not in BACKENDS:
        raise KeyError(f"Unknown execution backend: {name}. Available: {list(BACKENDS.keys())}")
    return BACKENDS[name]()

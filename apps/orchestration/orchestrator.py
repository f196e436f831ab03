"""
Pipeline Orchestrator service.

Drives one incident run through: intake → understand → decide → review → audit.

Key responsibilities:
1. Correlation IDs: trace_id/run_id attached to all logs, signals and the audit record
2. Contracts: each stage returns a structured DTO consumed by the next
3. Observability: signals at every stage boundary
4. Failure policy: any stage error aborts the run and fails the incident;
   nothing computed before the failure is persisted, and there is no retry
   here (batch retry and reprocess are the callers' concern)

A run is split so batches can parallelize it safely:
``build_context`` and ``finalize`` touch the database and run on the
orchestrating thread; ``execute_stages`` only talks to collaborators and may
run on a worker thread.
"""

from __future__ import annotations

import logging
import time
import traceback
import uuid

from django.conf import settings
from django.utils import timezone

from apps.credits.ledger import BaseCreditLedger, get_credit_ledger
from apps.incidents.exceptions import InvalidTransitionError
from apps.incidents.models import Incident, IncidentStatus
from apps.intelligence.providers import get_active_provider
from apps.intelligence.providers.base import BaseClassifier
from apps.orchestration.audit import complete_run, fail_run
from apps.orchestration.dtos import PipelineStage, RunOutcome, StageContext, StageError
from apps.orchestration.executors import (
    BaseExecutor,
    DecideExecutor,
    IntakeExecutor,
    ReviewExecutor,
    UnderstandExecutor,
)
from apps.orchestration.signals import (
    SignalTags,
    emit_pipeline_completed,
    emit_pipeline_started,
    emit_stage_failed,
    emit_stage_started,
    emit_stage_succeeded,
)
from apps.similarity.index import SimilarityIndex, get_index

logger = logging.getLogger(__name__)


# Stage order for the pipeline
STAGE_ORDER = [
    PipelineStage.INTAKE,
    PipelineStage.UNDERSTAND,
    PipelineStage.DECIDE,
    PipelineStage.REVIEW,
    PipelineStage.AUDIT,
]

# Stages that only call collaborators; audit persists and runs last.
ANALYSIS_STAGES = STAGE_ORDER[:-1]

STATUS_RUNNING = "RUNNING"
STATUS_COMPLETED = "COMPLETED"
STATUS_FAILED = "FAILED"
STATUS_DISPATCHED = "DISPATCHED"


class StageExecutionError(Exception):
    """Exception raised when a stage fails execution."""

    def __init__(self, stage: str, errors: list[str]):
        self.stage = stage
        self.errors = errors
        super().__init__(f"Stage {stage} failed: {'; '.join(errors)}")


def signal_tags(ctx: StageContext) -> SignalTags:
    return SignalTags(
        trace_id=ctx.trace_id,
        run_id=ctx.run_id,
        stage="pipeline",
        incident_id=ctx.incident_id,
        submitter=ctx.submitter,
        batch_id=ctx.batch_id,
        run_number=ctx.run_number,
    )


class PipelineOrchestrator:
    """
    Main orchestrator service for pipeline execution.

    Usage:
        orchestrator = PipelineOrchestrator()
        outcome = orchestrator.run(incident)
    """

    classifier: BaseClassifier
    index: SimilarityIndex
    ledger: BaseCreditLedger
    executors: dict[str, BaseExecutor]

    def __init__(
        self,
        classifier: BaseClassifier | None = None,
        index: SimilarityIndex | None = None,
        ledger: BaseCreditLedger | None = None,
        legacy_score_threshold: float | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            classifier: Classification provider (default from INTELLIGENCE_PROVIDER).
            index: Similarity index (default from SIMILARITY_BACKEND).
            ledger: Credit ledger (default local ledger).
            legacy_score_threshold: Optional extra human-review term
                (default HUMAN_REVIEW_LEGACY_SCORE_THRESHOLD, normally unset).
        """
        self.classifier = classifier if classifier is not None else get_active_provider()
        self.index = index if index is not None else get_index()
        self.ledger = ledger if ledger is not None else get_credit_ledger()
        self.legacy_score_threshold = (
            legacy_score_threshold
            if legacy_score_threshold is not None
            else getattr(settings, "HUMAN_REVIEW_LEGACY_SCORE_THRESHOLD", None)
        )

        self.executors = {
            PipelineStage.INTAKE: IntakeExecutor(),
            PipelineStage.UNDERSTAND: UnderstandExecutor(self.classifier),
            PipelineStage.DECIDE: DecideExecutor(self.classifier, self.index),
            PipelineStage.REVIEW: ReviewExecutor(self.classifier, self.legacy_score_threshold),
        }

    @property
    def external_data_sources(self) -> list[str]:
        return [f"classifier:{self.classifier.name}", f"similarity:{self.index.name}"]

    def build_context(self, incident: Incident, trace_id: str | None = None) -> StageContext:
        """Snapshot the incident's current inputs for one run."""
        return StageContext(
            trace_id=trace_id or str(uuid.uuid4()),
            run_id=str(uuid.uuid4()),
            incident_id=str(incident.id),
            submitter=incident.submitter,
            text=incident.text,
            run_number=incident.run_count + 1,
            declared_type=incident.declared_type,
            media_refs=incident.media_refs,
            submitted_at=incident.created_at.isoformat() if incident.created_at else "",
            batch_id=str(incident.batch_id) if incident.batch_id else None,
        )

    def run(self, incident: Incident, trace_id: str | None = None) -> RunOutcome:
        """
        Run the complete pipeline synchronously for a processing incident.

        Raises:
            InvalidTransitionError: If the incident is not processing.
        """
        if incident.status != IncidentStatus.PROCESSING:
            raise InvalidTransitionError(incident.pk, incident.status, "run", "run requires processing")

        ctx = self.build_context(incident, trace_id=trace_id)
        outcome = self.execute_stages(ctx)
        return self.finalize(ctx, outcome)

    def execute_stages(self, ctx: StageContext) -> RunOutcome:
        """
        Execute intake through review.

        Does not touch the database. Returns a RUNNING outcome ready for
        ``finalize`` or a FAILED one carrying the error.
        """
        start_time = time.perf_counter()
        outcome = RunOutcome(
            trace_id=ctx.trace_id,
            run_id=ctx.run_id,
            incident_id=ctx.incident_id,
            status=STATUS_RUNNING,
            run_number=ctx.run_number,
            started_at=timezone.now(),
        )

        pipeline_tags = signal_tags(ctx)
        emit_pipeline_started(pipeline_tags)

        try:
            for stage in ANALYSIS_STAGES:
                tags = pipeline_tags.for_stage(stage)
                emit_stage_started(tags)

                stage_result = self.executors[stage].execute(ctx)

                if stage_result.has_errors:
                    emit_stage_failed(
                        tags,
                        error_type="StageExecutionError",
                        error_message="; ".join(stage_result.errors),
                        duration_ms=stage_result.duration_ms,
                    )
                    raise StageExecutionError(stage=stage, errors=stage_result.errors)

                emit_stage_succeeded(tags, stage_result.duration_ms)
                ctx.previous_results[stage] = stage_result
                setattr(outcome, stage.value, stage_result)
                outcome.stages_completed.append(stage.value)

        except StageExecutionError as e:
            outcome.status = STATUS_FAILED
            outcome.final_error = StageError(
                error_type="StageExecutionError",
                message=str(e),
                stage=str(e.stage),
            )

        except Exception as e:
            outcome.status = STATUS_FAILED
            outcome.final_error = StageError(
                error_type=type(e).__name__,
                message=str(e),
                stack_trace=traceback.format_exc(),
            )
            logger.exception(
                f"Pipeline failed unexpectedly: {e}",
                extra={"trace_id": ctx.trace_id, "run_id": ctx.run_id},
            )

        outcome.total_duration_ms = (time.perf_counter() - start_time) * 1000
        return outcome

    def finalize(
        self,
        ctx: StageContext,
        outcome: RunOutcome,
        execution_backend: str = "direct",
    ) -> RunOutcome:
        """Run the audit stage for a RUNNING outcome, or fail the incident."""
        start_time = time.perf_counter()

        if outcome.status == STATUS_RUNNING:
            tags = signal_tags(ctx).for_stage(PipelineStage.AUDIT)
            emit_stage_started(tags)
            try:
                outcome.audit = complete_run(
                    ctx.incident_id,
                    {stage: getattr(outcome, stage.value) for stage in ANALYSIS_STAGES},
                    trace_id=ctx.trace_id,
                    execution_backend=execution_backend,
                    total_duration_ms=outcome.total_duration_ms,
                    external_data_sources=self.external_data_sources,
                    ledger=self.ledger,
                    index=self.index,
                )
                emit_stage_succeeded(tags, outcome.audit.duration_ms)
                outcome.stages_completed.append(PipelineStage.AUDIT.value)
                outcome.status = STATUS_COMPLETED
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                emit_stage_failed(
                    tags,
                    error_type=type(e).__name__,
                    error_message=str(e),
                    duration_ms=duration_ms,
                )
                logger.exception(
                    f"Audit stage failed: {e}",
                    extra={"trace_id": ctx.trace_id, "run_id": ctx.run_id},
                )
                outcome.status = STATUS_FAILED
                outcome.final_error = StageError(
                    error_type=type(e).__name__,
                    message=f"Stage {PipelineStage.AUDIT} failed: {e}",
                    stage=PipelineStage.AUDIT.value,
                    stack_trace=traceback.format_exc(),
                )

        if outcome.status == STATUS_FAILED:
            fail_run(ctx.incident_id, outcome.final_error.message, trace_id=ctx.trace_id)

        outcome.total_duration_ms += (time.perf_counter() - start_time) * 1000
        outcome.completed_at = timezone.now()
        emit_pipeline_completed(signal_tags(ctx), outcome.total_duration_ms, outcome.status)

        logger.info(
            f"Pipeline {outcome.status.lower()}: incident={ctx.incident_id} run={ctx.run_number}",
            extra={"trace_id": ctx.trace_id, "run_id": ctx.run_id, "incident_id": ctx.incident_id},
        )
        return outcome


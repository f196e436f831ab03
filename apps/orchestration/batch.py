"""
Batch processing.

A batch validates every item and checks the submitter's balance once, up
front, then runs the items in chunks of ``max_concurrency``. Each chunk's
analysis runs on a bounded worker pool with an all-settled join, so one
item's failure never affects its siblings; results are keyed by the item's
input index. Every item is finalized (audited or failed) on the calling
thread, which is also the only thread that updates the batch counters.

Sequential mode runs one item at a time on the calling thread and exists to
measure a baseline.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from django.conf import settings
from django.db import transaction

from apps.credits.ledger import BaseCreditLedger, get_credit_ledger
from apps.incidents.exceptions import BatchNotFoundError, SubmissionValidationError
from apps.incidents.models import Batch, IncidentStatus
from apps.orchestration.concurrency import Settled, chunked, settle_all
from apps.orchestration.dtos import RunOutcome, StageContext, StageError, Submission
from apps.orchestration.orchestrator import STATUS_FAILED, PipelineOrchestrator
from apps.orchestration.services import (
    check_credits,
    create_incident,
    credits_per_incident,
    load,
    paginate,
)
from apps.orchestration.signals import SignalTags, emit_batch_completed

logger = logging.getLogger(__name__)


@dataclass
class BatchItemResult:
    index: int
    incident_id: str
    status: str
    route: str | None = None
    severity_label: str | None = None
    error: str | None = None

    @classmethod
    def from_outcome(cls, index: int, outcome: RunOutcome) -> BatchItemResult:
        item = cls(index=index, incident_id=outcome.incident_id, status=outcome.status)
        if outcome.succeeded and outcome.decide and outcome.understand:
            item.route = outcome.decide.decision.route
            item.severity_label = outcome.understand.effective_fields.severity_label
        if outcome.final_error:
            item.error = outcome.final_error.message
        return item

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "incident_id": self.incident_id,
            "status": self.status,
            "route": self.route,
            "severity_label": self.severity_label,
            "error": self.error,
        }


@dataclass
class BatchResult:
    batch_id: str
    total: int
    processed: int
    failed: int
    duration_ms: float
    sequential_estimate_ms: float
    speedup_percent: float
    parallel: bool
    max_concurrency: int
    retry_of: str | None = None
    results: dict[int, BatchItemResult] = field(default_factory=dict)

    @classmethod
    def from_batch(cls, batch: Batch, results: dict[int, BatchItemResult]) -> BatchResult:
        return cls(
            batch_id=str(batch.id),
            total=batch.total_count,
            processed=batch.processed_count,
            failed=batch.failed_count,
            duration_ms=batch.processing_duration_ms,
            sequential_estimate_ms=batch.sequential_estimate_ms,
            speedup_percent=batch.speedup_percent,
            parallel=batch.parallel,
            max_concurrency=batch.max_concurrency,
            retry_of=str(batch.retry_of_id) if batch.retry_of_id else None,
            results=results,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "processed": self.processed,
            "failed": self.failed,
            "duration_ms": round(self.duration_ms, 2),
            "sequential_estimate_ms": self.sequential_estimate_ms,
            "speedup_percent": self.speedup_percent,
            "parallel": self.parallel,
            "max_concurrency": self.max_concurrency,
            "retry_of": self.retry_of,
            "results": [self.results[index].to_dict() for index in sorted(self.results)],
        }


def _failed_outcome(ctx: StageContext, error: BaseException) -> RunOutcome:
    return RunOutcome(
        trace_id=ctx.trace_id,
        run_id=ctx.run_id,
        incident_id=ctx.incident_id,
        status=STATUS_FAILED,
        run_number=ctx.run_number,
        final_error=StageError(error_type=type(error).__name__, message=str(error)),
    )


class BatchOrchestrator:
    """Runs many incidents through the pipeline as one batch."""

    def __init__(
        self,
        orchestrator: PipelineOrchestrator | None = None,
        ledger: BaseCreditLedger | None = None,
    ):
        self.orchestrator = orchestrator if orchestrator is not None else PipelineOrchestrator()
        if ledger is None:
            ledger = self.orchestrator.ledger if self.orchestrator.ledger is not None else get_credit_ledger()
        self.ledger = ledger

    def validate_items(self, items: list[Any], submitter: str) -> list[Submission]:
        """
        Validate every item before anything is created.

        Raises:
            SubmissionValidationError: Listing every invalid item by index.
        """
        if not isinstance(items, list) or not items:
            raise SubmissionValidationError("batch must contain at least one incident")

        submissions: list[Submission] = []
        errors: list[str] = []
        for index, item in enumerate(items):
            try:
                submissions.append(Submission.from_payload(item, submitter=submitter))
            except SubmissionValidationError as e:
                errors.extend(f"item {index}: {message}" for message in e.errors)
        if errors:
            raise SubmissionValidationError(errors)
        return submissions

    def process_batch(
        self,
        items: list[dict[str, Any]],
        submitter: str,
        parallel: bool = True,
        max_concurrency: int | None = None,
        retry_of: Batch | None = None,
    ) -> BatchResult:
        """
        Process a batch of submissions.

        Raises:
            SubmissionValidationError: If any item is malformed (nothing is created).
            InsufficientCreditsError: If the balance is below one run per item.
        """
        submissions = self.validate_items(items, submitter)
        check_credits(submitter, len(submissions) * credits_per_incident(), self.ledger)

        max_concurrency = max_concurrency or int(getattr(settings, "BATCH_DEFAULT_MAX_CONCURRENCY", 10))
        if not parallel:
            max_concurrency = 1

        with transaction.atomic():
            batch = Batch.objects.create(
                submitter=submitter,
                total_count=len(submissions),
                parallel=parallel,
                max_concurrency=max_concurrency,
                retry_of=retry_of,
            )
            incidents = [
                create_incident(submission, batch=batch, batch_index=index)
                for index, submission in enumerate(submissions)
            ]

        contexts = [self.orchestrator.build_context(incident) for incident in incidents]

        logger.info(
            f"Batch {batch.id} started: {len(contexts)} incidents, "
            f"{'parallel' if parallel else 'sequential'}, max_concurrency={max_concurrency}",
            extra={"batch_id": str(batch.id), "submitter": submitter},
        )

        start_time = time.perf_counter()
        results: dict[int, BatchItemResult] = {}

        for start_index, chunk in chunked(contexts, max_concurrency):
            if parallel:
                settled = settle_all(
                    self.orchestrator.execute_stages, chunk, max_concurrency, start_index=start_index
                )
            else:
                settled = [self._settle_inline(start_index, chunk[0])]

            for item in settled:
                ctx = contexts[item.index]
                outcome = item.value if item.ok else _failed_outcome(ctx, item.error)
                outcome = self.orchestrator.finalize(ctx, outcome)
                batch.record_outcome(outcome.succeeded)
                results[item.index] = BatchItemResult.from_outcome(item.index, outcome)

        duration_ms = (time.perf_counter() - start_time) * 1000
        baseline_ms = float(getattr(settings, "BATCH_SEQUENTIAL_BASELINE_MS", 15000))
        batch.mark_completed(duration_ms, baseline_ms * batch.total_count)

        emit_batch_completed(
            SignalTags(
                trace_id=str(batch.id),
                run_id=str(batch.id),
                stage="batch",
                submitter=submitter,
                batch_id=str(batch.id),
            ),
            total=batch.total_count,
            processed=batch.processed_count,
            failed=batch.failed_count,
            duration_ms=duration_ms,
        )
        logger.info(
            f"Batch {batch.id} completed: {batch.processed_count}/{batch.total_count} processed, "
            f"{batch.failed_count} failed in {duration_ms:.0f}ms ({batch.speedup_percent}% faster)",
            extra={"batch_id": str(batch.id)},
        )
        return BatchResult.from_batch(batch, results)

    def _settle_inline(self, index: int, ctx: StageContext) -> Settled:
        try:
            return Settled(index=index, value=self.orchestrator.execute_stages(ctx))
        except Exception as e:
            logger.exception(f"Item {index} failed: {e}")
            return Settled(index=index, error=e)

    def retry_failed_incidents(
        self,
        batch_id: Any,
        parallel: bool = True,
        max_concurrency: int | None = None,
    ) -> BatchResult | None:
        """
        Re-submit a batch's failed incidents as a new batch pointing back at it.

        Returns None when the batch has no failed incidents.

        Raises:
            BatchNotFoundError: If the batch does not exist.
        """
        original = get_batch(batch_id)
        failed = list(original.incidents.filter(status=IncidentStatus.FAILED).order_by("batch_index"))
        if not failed:
            logger.info(f"Batch {original.id} has no failed incidents to retry")
            return None

        items = [
            {
                "text": incident.text,
                "incident_type": incident.declared_type or "auto",
                "image_refs": incident.image_refs,
                "audio_refs": incident.audio_refs,
                "video_refs": incident.video_refs,
            }
            for incident in failed
        ]
        logger.info(f"Retrying {len(items)} failed incidents from batch {original.id}")
        return self.process_batch(
            items,
            submitter=original.submitter,
            parallel=parallel,
            max_concurrency=max_concurrency or original.max_concurrency,
            retry_of=original,
        )


def get_batch(batch_id: Any) -> Batch:
    """
    Raises:
        BatchNotFoundError: If no batch has this id.
    """
    return load(Batch, batch_id, BatchNotFoundError)


def list_batches(submitter: str | None = None, page: int = 1, limit: int = 20) -> dict[str, Any]:
    queryset = Batch.objects.all()
    if submitter:
        queryset = queryset.filter(submitter=submitter)
    return paginate(queryset.order_by("-created_at"), page=page, limit=limit)


def get_batch_statistics(batch_id: Any) -> dict[str, Any]:
    """Distributions and rates for one batch."""
    batch = get_batch(batch_id)
    incidents = list(batch.incidents.all())

    severity = Counter(incident.severity_label or "Unknown" for incident in incidents)
    routes = Counter(incident.route or "Unknown" for incident in incidents)
    types = Counter(incident.incident_type or "Unknown" for incident in incidents)

    total = batch.total_count
    return {
        "batch_id": str(batch.id),
        "status": batch.status,
        "total_incidents": total,
        "processed": batch.processed_count,
        "failed": batch.failed_count,
        "success_rate": round(batch.processed_count / total * 100, 2) if total else 0.0,
        "processing_time_ms": batch.processing_duration_ms,
        "avg_processing_time_per_incident_ms": (
            round(batch.processing_duration_ms / total) if total and batch.processing_duration_ms else None
        ),
        "sequential_estimate_ms": batch.sequential_estimate_ms,
        "speedup_percent": batch.speedup_percent,
        "severity_distribution": dict(severity),
        "route_distribution": dict(routes),
        "type_distribution": dict(types),
        "retry_of": str(batch.retry_of_id) if batch.retry_of_id else None,
        "created_at": batch.created_at.isoformat(),
        "completed_at": batch.completed_at.isoformat() if batch.completed_at else None,
    }

"""
Stage executors for each pipeline stage.

Each executor wraps one collaborator concern and returns a structured DTO.
Executors never persist anything and never call downstream stages; errors
are captured into ``result.errors`` for the orchestrator to act on. The
Intake through Review executors are safe to run off the orchestrating
thread because they do not touch the ORM.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from django.utils import timezone

from apps.intelligence.providers.base import BaseClassifier, assigned_team
from apps.orchestration.concurrency import run_concurrently
from apps.orchestration.dtos import (
    DecideResult,
    IntakeRecord,
    IntakeResult,
    PipelineStage,
    ReviewResult,
    StageContext,
    StageResult,
    UnderstandResult,
)
from apps.orchestration.rules import decide, needs_human_review
from apps.similarity.index import SimilarityIndex

logger = logging.getLogger(__name__)


def _begin(result: StageResult) -> float:
    result.started_at = timezone.now().isoformat()
    return time.perf_counter()


def _finish(result: StageResult, start_time: float) -> None:
    result.completed_at = timezone.now().isoformat()
    result.duration_ms = (time.perf_counter() - start_time) * 1000


class BaseExecutor(ABC):
    """Base class for stage executors."""

    stage: str = ""

    @abstractmethod
    def execute(self, ctx: StageContext) -> Any:
        """Execute the stage and return a result DTO."""
        raise NotImplementedError


class IntakeExecutor(BaseExecutor):
    """
    Stage 1: Intake executor.

    Normalizes the submission into the canonical record. No external calls.
    """

    stage = PipelineStage.INTAKE

    def execute(self, ctx: StageContext) -> IntakeResult:
        result = IntakeResult()
        start_time = _begin(result)

        if not ctx.text or not ctx.text.strip():
            result.errors.append("Intake error: incident text is empty")
        else:
            result.record = IntakeRecord(
                incident_id=ctx.incident_id,
                text=ctx.text,
                media_refs=list(ctx.media_refs),
                submitter=ctx.submitter,
                declared_type=ctx.declared_type,
                submitted_at=ctx.submitted_at or result.started_at,
            )

        _finish(result, start_time)
        return result


class UnderstandExecutor(BaseExecutor):
    """
    Stage 2: Understand executor.

    Classification and embedding run concurrently (both read only the raw
    text); summarization follows classification. A declared incident type
    overrides the classified category.
    """

    stage = PipelineStage.UNDERSTAND

    def __init__(self, classifier: BaseClassifier):
        self.classifier = classifier

    def execute(self, ctx: StageContext) -> UnderstandResult:
        result = UnderstandResult()
        start_time = _begin(result)

        try:
            fields, embedding = run_concurrently(
                lambda: self.classifier.classify(ctx.text, ctx.media_refs),
                lambda: self.classifier.embed(ctx.text),
            )
            result.fields = fields
            result.embedding = list(embedding)
            result.effective_type = ctx.declared_type or fields.incident_type
            if ctx.declared_type and ctx.declared_type != fields.incident_type:
                logger.info(
                    f"Declared type '{ctx.declared_type}' overrides classified '{fields.incident_type}'",
                    extra={"trace_id": ctx.trace_id, "incident_id": ctx.incident_id},
                )
            result.summary = self.classifier.summarize(result.effective_fields, ctx.text)
        except Exception as e:
            logger.exception("Error in UnderstandExecutor")
            result.errors.append(f"Understand error: {e}")

        _finish(result, start_time)
        return result


class DecideExecutor(BaseExecutor):
    """
    Stage 3: Decide executor.

    Applies the routing rules, then validates the decision and searches for
    similar incidents concurrently. Validation is advisory and never changes
    the route.
    """

    stage = PipelineStage.DECIDE

    def __init__(self, classifier: BaseClassifier, index: SimilarityIndex):
        self.classifier = classifier
        self.index = index

    def execute(self, ctx: StageContext) -> DecideResult:
        result = DecideResult()
        start_time = _begin(result)

        try:
            understand: UnderstandResult = ctx.previous_results[PipelineStage.UNDERSTAND]
            fields = understand.effective_fields
            decision = decide(fields)
            result.decision = decision

            validation, similar = run_concurrently(
                lambda: self.classifier.validate_routing(
                    understand.summary.summary, decision.route, decision.rules_triggered
                ),
                lambda: self.index.search(
                    understand.embedding,
                    k=self.index.top_k,
                    filters={"incident_type": fields.incident_type},
                    exclude_ids=[ctx.incident_id],
                ),
            )
            result.validation = validation
            result.similar_incidents = list(similar)

            if validation.override_suggested:
                logger.info(
                    f"Routing validation suggests {validation.suggested_route} over {decision.route}",
                    extra={"trace_id": ctx.trace_id, "incident_id": ctx.incident_id},
                )
        except Exception as e:
            logger.exception("Error in DecideExecutor")
            result.errors.append(f"Decide error: {e}")

        _finish(result, start_time)
        return result


class ReviewExecutor(BaseExecutor):
    """
    Stage 4: Review executor.

    Runs the policy/bias review and evaluates the human review predicate.
    """

    stage = PipelineStage.REVIEW

    def __init__(self, classifier: BaseClassifier, legacy_score_threshold: float | None = None):
        self.classifier = classifier
        self.legacy_score_threshold = legacy_score_threshold

    def execute(self, ctx: StageContext) -> ReviewResult:
        result = ReviewResult()
        start_time = _begin(result)

        try:
            understand: UnderstandResult = ctx.previous_results[PipelineStage.UNDERSTAND]
            decided: DecideResult = ctx.previous_results[PipelineStage.DECIDE]
            fields = understand.effective_fields

            review = self.classifier.review(understand.summary.summary, decided.decision.route, fields)
            result.review = review
            result.human_review_required = needs_human_review(
                fields, review, self.legacy_score_threshold
            )
            result.assigned_team = assigned_team(fields.incident_type, fields.severity_label)
        except Exception as e:
            logger.exception("Error in ReviewExecutor")
            result.errors.append(f"Review error: {e}")

        _finish(result, start_time)
        return result

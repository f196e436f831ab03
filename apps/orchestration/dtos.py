"""
Data Transfer Objects (DTOs) for pipeline stage contracts.

Each stage returns a structured result object. These are the contracts
between stages - the orchestrator uses these to pass data down the pipeline
and the audit builder serializes them into the AuditRecord.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any

from django.db import models

from apps.incidents.exceptions import SubmissionValidationError
from apps.incidents.models import IncidentType, Route, severity_label_for

MEDIA_KINDS = ("image_refs", "audio_refs", "video_refs")


class PipelineStage(models.TextChoices):
    """Pipeline stages, in execution order."""

    INTAKE = "intake", "Intake"
    UNDERSTAND = "understand", "Understand"
    DECIDE = "decide", "Decide"
    REVIEW = "review", "Review"
    AUDIT = "audit", "Audit"


def _clamp_score(value: Any) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        score = 50
    return max(0, min(100, score))


@dataclass
class Entities:
    location: str | None = None
    time: str | None = None
    parties: list[str] = field(default_factory=list)


@dataclass
class ExtractedFields:
    """
    Structured output of classification.

    The severity label is always recomputed from the score; a label supplied
    by the classifier is ignored.
    """

    incident_type: str = IncidentType.OTHER.value
    severity_score: int = 50
    severity_label: str = ""
    entities: Entities = field(default_factory=Entities)
    emotion: str = "neutral"
    risk_indicators: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.severity_score = _clamp_score(self.severity_score)
        self.severity_label = severity_label_for(self.severity_score)
        if self.incident_type not in IncidentType.values:
            self.incident_type = IncidentType.OTHER.value
        self.risk_indicators = [str(i).lower() for i in self.risk_indicators]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractedFields:
        entities = data.get("entities") or {}
        parties = entities.get("parties") or []
        return cls(
            incident_type=str(data.get("incident_type") or IncidentType.OTHER.value).lower(),
            severity_score=data.get("severity_score", 50),
            entities=Entities(
                location=entities.get("location"),
                time=entities.get("time"),
                parties=[str(p) for p in parties] if isinstance(parties, list) else [str(parties)],
            ),
            emotion=str(data.get("emotion") or "neutral").lower(),
            risk_indicators=list(data.get("risk_indicators") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RoutingDecision:
    route: str = Route.LOG_ONLY.value
    rules_triggered: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Summary:
    summary: str = ""
    recommended_actions: list[str] = field(default_factory=list)
    urgency: str = "within_24_hours"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Summary:
        actions = data.get("recommended_actions") or []
        return cls(
            summary=str(data.get("summary") or ""),
            recommended_actions=[str(a) for a in actions] if isinstance(actions, list) else [str(actions)],
            urgency=str(data.get("urgency") or "within_24_hours"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RoutingValidation:
    agrees_with_routing: bool = True
    override_suggested: bool = False
    suggested_route: str | None = None
    reasoning: str = ""
    additional_factors: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RoutingValidation:
        return cls(
            agrees_with_routing=bool(data.get("agrees_with_routing", True)),
            override_suggested=bool(data.get("override_suggested", False)),
            suggested_route=data.get("suggested_route"),
            reasoning=str(data.get("reasoning") or ""),
            additional_factors=list(data.get("additional_factors") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReviewOutcome:
    """Policy and bias review of a routed incident."""

    policy_passed: bool = True
    policy_notes: str = ""
    bias_passed: bool = True
    concerns: list[str] = field(default_factory=list)
    missing_information: list[str] = field(default_factory=list)
    legal_considerations: list[str] = field(default_factory=list)
    overall_passed: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReviewOutcome:
        policy = data.get("policy_compliance") or {}
        bias = data.get("bias_check") or {}
        return cls(
            policy_passed=bool(policy.get("passed", data.get("policy_passed", True))),
            policy_notes=str(policy.get("notes") or ""),
            bias_passed=bool(bias.get("passed", data.get("bias_passed", True))),
            concerns=list(bias.get("concerns") or data.get("concerns") or []),
            missing_information=list(data.get("missing_information") or []),
            legal_considerations=list(data.get("legal_considerations") or []),
            overall_passed=bool(data.get("overall_passed", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SimilarIncident:
    incident_id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Submission:
    """A validated incident submission."""

    text: str
    submitter: str
    declared_type: str | None = None
    image_refs: list[str] = field(default_factory=list)
    audio_refs: list[str] = field(default_factory=list)
    video_refs: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any, submitter: str | None = None) -> Submission:
        """
        Validate a raw submission payload.

        ``submitter`` overrides the payload's own submitter (batch items are
        charged to the batch submitter).

        Raises:
            SubmissionValidationError: If the payload is malformed.
        """
        if not isinstance(payload, dict):
            raise SubmissionValidationError("submission must be an object")

        errors = []
        text = payload.get("text")
        if not isinstance(text, str) or not text.strip():
            errors.append("text is required")

        owner = submitter or payload.get("submitter") or payload.get("wallet_address")
        if not isinstance(owner, str) or not owner.strip():
            errors.append("submitter is required")

        declared = payload.get("incident_type") or payload.get("declared_type")
        if declared in ("", "auto"):
            declared = None
        if declared is not None and declared not in IncidentType.values:
            errors.append(f"incident_type must be one of {', '.join(IncidentType.values)} or auto")

        media: dict[str, list[str]] = {}
        for kind in MEDIA_KINDS:
            refs = payload.get(kind) or []
            if not isinstance(refs, list) or not all(isinstance(r, str) for r in refs):
                errors.append(f"{kind} must be a list of strings")
                refs = []
            media[kind] = refs

        if errors:
            raise SubmissionValidationError(errors)

        return cls(
            text=text.strip(),
            submitter=owner.strip(),
            declared_type=declared,
            **media,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class IntakeRecord:
    """Canonical record produced by the Intake stage."""

    incident_id: str
    text: str
    media_refs: list[str]
    submitter: str
    declared_type: str | None
    submitted_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StageContext:
    """
    Input context for all pipeline stages.

    Carries correlation IDs, the incident's current inputs and the outputs
    of the stages that already ran.
    """

    trace_id: str
    run_id: str
    incident_id: str
    submitter: str
    text: str
    run_number: int = 1
    declared_type: str | None = None
    media_refs: list[str] = field(default_factory=list)
    submitted_at: str = ""
    batch_id: str | None = None
    previous_results: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StageError:
    """Represents an error that occurred during stage execution."""

    error_type: str
    message: str
    stage: str = ""
    stack_trace: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StageResult:
    errors: list[str] = field(default_factory=list)
    started_at: str = ""
    completed_at: str = ""
    duration_ms: float = 0.0

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class IntakeResult(StageResult):
    """Stage 1: canonical record, no external calls."""

    record: IntakeRecord | None = None


@dataclass
class UnderstandResult(StageResult):
    """Stage 2: classification, embedding and summary."""

    fields: ExtractedFields | None = None
    summary: Summary | None = None
    embedding: list[float] = field(default_factory=list)
    effective_type: str = IncidentType.OTHER.value

    @property
    def effective_fields(self) -> ExtractedFields | None:
        """Classified fields with the declared category applied."""
        if self.fields is None:
            return None
        return replace(self.fields, incident_type=self.effective_type)

    def to_dict(self) -> dict[str, Any]:
        # Vectors stay out of the audit trail.
        data = asdict(self)
        data["embedding"] = {"dimensions": len(self.embedding)}
        return data


@dataclass
class DecideResult(StageResult):
    """Stage 3: routing decision, its validation and similar incidents."""

    decision: RoutingDecision | None = None
    validation: RoutingValidation | None = None
    similar_incidents: list[SimilarIncident] = field(default_factory=list)


@dataclass
class ReviewResult(StageResult):
    """Stage 4: policy/bias review and the human review predicate."""

    review: ReviewOutcome | None = None
    human_review_required: bool = False
    assigned_team: str = ""


@dataclass
class AuditResult(StageResult):
    """Stage 5: persisted audit record and side effects."""

    audit_record_id: str | None = None
    credits_used: int = 0
    debit_succeeded: bool = False
    index_scheduled: bool = False


@dataclass
class RunOutcome:
    """
    Final result of one pipeline run.

    Contains all stage results and overall status.
    """

    trace_id: str
    run_id: str
    incident_id: str
    status: str  # COMPLETED, FAILED, DISPATCHED
    run_number: int = 1
    intake: IntakeResult | None = None
    understand: UnderstandResult | None = None
    decide: DecideResult | None = None
    review: ReviewResult | None = None
    audit: AuditResult | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    total_duration_ms: float = 0.0
    stages_completed: list[str] = field(default_factory=list)
    workflow_job_id: str | None = None
    final_error: StageError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "COMPLETED"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "trace_id": self.trace_id,
            "run_id": self.run_id,
            "incident_id": self.incident_id,
            "status": self.status,
            "run_number": self.run_number,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
            "stages_completed": self.stages_completed,
        }
        for name in ("intake", "understand", "decide", "review", "audit"):
            stage_result = getattr(self, name)
            if stage_result:
                result[name] = stage_result.to_dict()
        if self.workflow_job_id:
            result["workflow_job_id"] = self.workflow_job_id
        if self.final_error:
            result["final_error"] = self.final_error.to_dict()
        return result

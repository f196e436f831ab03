"""
Models for incident intake.

Incident is the unit of work. Its lifecycle fields move only through the
transition methods defined here, each of which appends an IncidentTransition.
AuditRecord, RejectionRecord, CorrectionRecord and IncidentTransition are
append-only: rows are written once and never updated.
"""

from __future__ import annotations

import functools
import uuid
from typing import Any

from django.db import models, transaction
from django.utils import timezone

from apps.incidents.exceptions import ImmutableRecordError, InvalidTransitionError


class IncidentStatus(models.TextChoices):
    """Incident lifecycle states."""

    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    PENDING_REPROCESS = "pending_reprocess", "Pending Reprocess"


class IncidentType(models.TextChoices):
    HARASSMENT = "harassment", "Harassment"
    ACCIDENT = "accident", "Accident"
    CYBER = "cyber", "Cyber"
    INFRASTRUCTURE = "infrastructure", "Infrastructure"
    MEDICAL = "medical", "Medical"
    OTHER = "other", "Other"


class SeverityLabel(models.TextChoices):
    LOW = "Low", "Low"
    MEDIUM = "Medium", "Medium"
    HIGH = "High", "High"
    CRITICAL = "Critical", "Critical"


class Route(models.TextChoices):
    """Final triage decision."""

    LOG_ONLY = "LogOnly", "Log Only"
    REVIEW = "Review", "Review"
    ESCALATE = "Escalate", "Escalate"
    IMMEDIATE = "Immediate", "Immediate"


class Urgency(models.TextChoices):
    IMMEDIATE = "immediate", "Immediate"
    WITHIN_1_HOUR = "within_1_hour", "Within 1 hour"
    WITHIN_24_HOURS = "within_24_hours", "Within 24 hours"
    ROUTINE = "routine", "Routine"


class TransitionEvent(models.TextChoices):
    SUBMITTED = "submitted", "Submitted"
    RUN_COMPLETED = "run_completed", "Run Completed"
    RUN_FAILED = "run_failed", "Run Failed"
    REJECTED = "rejected", "Rejected"
    CORRECTED = "corrected", "Corrected"
    REPROCESS_STARTED = "reprocess_started", "Reprocess Started"


class BatchStatus(models.TextChoices):
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"


# Inclusive upper bound of each severity bucket, in ascending order.
SEVERITY_BUCKETS = [
    (25, SeverityLabel.LOW),
    (50, SeverityLabel.MEDIUM),
    (75, SeverityLabel.HIGH),
    (100, SeverityLabel.CRITICAL),
]


def severity_label_for(score: int) -> str:
    """Return the severity label whose bucket contains ``score`` (0-100)."""
    if score < 0 or score > 100:
        raise ValueError(f"severity score out of range: {score}")
    for upper, label in SEVERITY_BUCKETS:
        if score <= upper:
            return label.value
    raise ValueError(f"severity score out of range: {score}")


# Fields written by a completing run.
RUN_OUTPUT_FIELDS = [
    "severity_score",
    "severity_label",
    "incident_type",
    "extracted_fields",
    "summary",
    "recommended_actions",
    "urgency",
    "route",
    "rules_triggered",
    "assigned_team",
    "human_review_required",
]


class AppendOnlyModel(models.Model):
    """Abstract base for records that are written once and never updated."""

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError(f"{self.__class__.__name__} {self.pk} is append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError(f"{self.__class__.__name__} {self.pk} is append-only")


class Batch(models.Model):
    """
    A group of incidents submitted together.

    Counters only move through ``record_outcome``; ``processed + failed`` never
    exceeds ``total`` and the batch is frozen once completed.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    submitter = models.CharField(max_length=255, db_index=True)
    status = models.CharField(
        max_length=20,
        choices=BatchStatus.choices,
        default=BatchStatus.PROCESSING,
        db_index=True,
    )
    total_count = models.PositiveIntegerField(default=0)
    processed_count = models.PositiveIntegerField(default=0)
    failed_count = models.PositiveIntegerField(default=0)
    parallel = models.BooleanField(default=True)
    max_concurrency = models.PositiveIntegerField(default=10)
    processing_duration_ms = models.FloatField(
        default=0.0,
        help_text="Wall-clock duration of the batch run in milliseconds.",
    )
    sequential_estimate_ms = models.FloatField(
        default=0.0,
        help_text="Estimated duration had the items run one at a time.",
    )
    retry_of = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="retries",
        help_text="Batch whose failed subset this batch re-submitted.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "batches"
        indexes = [
            models.Index(fields=["submitter", "created_at"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(
                    processed_count__lte=models.F("total_count") - models.F("failed_count")
                ),
                name="batch_counts_within_total",
            ),
        ]

    def __str__(self):
        return f"Batch {self.id} [{self.status}] {self.processed_count}/{self.total_count}"

    @property
    def outstanding(self) -> int:
        return self.total_count - self.processed_count - self.failed_count

    @property
    def speedup_percent(self) -> float:
        if not self.sequential_estimate_ms:
            return 0.0
        saved = self.sequential_estimate_ms - self.processing_duration_ms
        return round(saved / self.sequential_estimate_ms * 100, 1)

    def _ensure_open(self):
        if self.status == BatchStatus.COMPLETED:
            raise ImmutableRecordError(f"Batch {self.id} is completed")

    def record_outcome(self, success: bool):
        """Count one member's terminal outcome."""
        self._ensure_open()
        if self.outstanding <= 0:
            raise ImmutableRecordError(f"Batch {self.id} has no outstanding members")
        if success:
            self.processed_count += 1
        else:
            self.failed_count += 1
        self.save(update_fields=["processed_count", "failed_count", "updated_at"])

    def mark_completed(self, duration_ms: float, sequential_estimate_ms: float):
        """Close the batch once every member reached a terminal outcome."""
        self._ensure_open()
        if self.outstanding != 0:
            raise ImmutableRecordError(
                f"Batch {self.id} still has {self.outstanding} outstanding members"
            )
        self.status = BatchStatus.COMPLETED
        self.processing_duration_ms = duration_ms
        self.sequential_estimate_ms = sequential_estimate_ms
        self.completed_at = timezone.now()
        self.save(
            update_fields=[
                "status",
                "processing_duration_ms",
                "sequential_estimate_ms",
                "completed_at",
                "updated_at",
            ]
        )


def locked_transition(method):
    """Run a transition with the incident row locked and its guard fields re-read."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with transaction.atomic():
            self._lock()
            return method(self, *args, **kwargs)

    return wrapper


class Incident(models.Model):
    """
    One submitted report and its evolving analysis state.

    A rejected incident is ``failed`` with a non-null ``rejection_reason``;
    an organic pipeline failure has no reason.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    submitter = models.CharField(max_length=255, db_index=True)

    # Submission
    text = models.TextField()
    declared_type = models.CharField(
        max_length=20,
        choices=IncidentType.choices,
        null=True,
        blank=True,
        help_text="Type given by the submitter. Null means auto-detect.",
    )
    image_refs = models.JSONField(default=list, blank=True)
    audio_refs = models.JSONField(default=list, blank=True)
    video_refs = models.JSONField(default=list, blank=True)

    # State machine
    status = models.CharField(
        max_length=20,
        choices=IncidentStatus.choices,
        default=IncidentStatus.PROCESSING,
        db_index=True,
    )

    # Run output
    severity_score = models.PositiveSmallIntegerField(null=True, blank=True)
    severity_label = models.CharField(
        max_length=10,
        choices=SeverityLabel.choices,
        blank=True,
        default="",
    )
    incident_type = models.CharField(
        max_length=20,
        choices=IncidentType.choices,
        blank=True,
        default="",
        help_text="Effective incident category of the last completed run.",
    )
    extracted_fields = models.JSONField(default=dict, blank=True)
    summary = models.TextField(blank=True, default="")
    recommended_actions = models.JSONField(default=list, blank=True)
    urgency = models.CharField(max_length=20, choices=Urgency.choices, blank=True, default="")
    route = models.CharField(max_length=10, choices=Route.choices, blank=True, default="")
    rules_triggered = models.JSONField(default=list, blank=True)
    assigned_team = models.CharField(max_length=100, blank=True, default="")
    human_review_required = models.BooleanField(default=False)

    # Rejection / correction
    rejection_reason = models.TextField(null=True, blank=True)
    correction_data = models.JSONField(
        null=True,
        blank=True,
        help_text="Suggested corrections on rejection, then the applied correction payload.",
    )
    error_message = models.TextField(blank=True, default="")

    # Batch membership
    batch = models.ForeignKey(
        Batch,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="incidents",
    )
    batch_index = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Position of this incident in the submitted batch.",
    )

    workflow_job_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Job id when the run was handed to the workflow runner.",
    )
    run_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "updated_at"]),
            models.Index(fields=["submitter", "created_at"]),
            models.Index(fields=["batch", "batch_index"]),
        ]

    def __str__(self):
        return f"Incident {self.id} [{self.status}]"

    @property
    def media_refs(self) -> list[str]:
        return [*self.image_refs, *self.audio_refs, *self.video_refs]

    @property
    def is_rejected(self) -> bool:
        return self.status == IncidentStatus.FAILED and bool(self.rejection_reason)

    def snapshot(self) -> dict[str, Any]:
        """Return the correctable and decision fields as plain data."""
        return {
            "text": self.text,
            "incident_type": self.declared_type or self.incident_type or None,
            "media_refs": self.media_refs,
            "severity_score": self.severity_score,
            "severity_label": self.severity_label or None,
            "route": self.route or None,
        }

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _lock(self):
        """Lock the row; guards must see the committed state, not this copy's."""
        locked = (
            type(self)
            .objects.select_for_update()
            .only("status", "rejection_reason", "run_count")
            .get(pk=self.pk)
        )
        self.status = locked.status
        self.rejection_reason = locked.rejection_reason
        self.run_count = locked.run_count

    def _guard(self, operation: str, allowed: bool, reason: str = ""):
        if not allowed:
            raise InvalidTransitionError(self.pk, self.status, operation, reason)

    def _transition(
        self,
        to_status: str,
        event: str,
        update_fields: list[str],
        actor: str = "system",
        detail: dict[str, Any] | None = None,
    ) -> IncidentTransition:
        from_status = self.status
        self.status = to_status
        with transaction.atomic():
            self.save(update_fields=[*update_fields, "status", "updated_at"])
            return IncidentTransition.objects.create(
                incident=self,
                from_status=from_status,
                to_status=to_status,
                event=event,
                actor=actor,
                detail=detail or {},
            )

    def record_submission(self, actor: str = "system"):
        """Append the creation entry for a freshly created incident."""
        return IncidentTransition.objects.create(
            incident=self,
            from_status="",
            to_status=self.status,
            event=TransitionEvent.SUBMITTED,
            actor=actor,
        )

    @locked_transition
    def mark_completed(self, outcome: dict[str, Any], actor: str = "pipeline"):
        """Write a completed run's outputs; ``processing -> completed``."""
        self._guard("complete", self.status == IncidentStatus.PROCESSING)
        unknown = set(outcome) - set(RUN_OUTPUT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown run output fields: {sorted(unknown)}")
        for name, value in outcome.items():
            setattr(self, name, value)
        if self.severity_score is not None:
            self.severity_label = severity_label_for(self.severity_score)
        self.error_message = ""
        self.completed_at = timezone.now()
        self.run_count += 1
        return self._transition(
            IncidentStatus.COMPLETED,
            TransitionEvent.RUN_COMPLETED,
            [*outcome.keys(), "severity_label", "error_message", "completed_at", "run_count"],
            actor=actor,
            detail={"route": self.route, "rules_triggered": self.rules_triggered},
        )

    @locked_transition
    def attach_workflow_job(self, job_id: str):
        """Remember the workflow runner job that will complete this run."""
        self._guard("dispatch", self.status == IncidentStatus.PROCESSING)
        self.workflow_job_id = job_id
        self.save(update_fields=["workflow_job_id", "updated_at"])

    @locked_transition
    def mark_failed(self, error_message: str, actor: str = "pipeline"):
        """Record an organic run failure; ``processing -> failed``."""
        self._guard("fail", self.status == IncidentStatus.PROCESSING)
        self.error_message = error_message
        self.completed_at = timezone.now()
        self.run_count += 1
        return self._transition(
            IncidentStatus.FAILED,
            TransitionEvent.RUN_FAILED,
            ["error_message", "completed_at", "run_count"],
            actor=actor,
            detail={"error": error_message},
        )

    @locked_transition
    def reject(
        self,
        reason: str,
        actor: str,
        suggested_corrections: dict[str, Any] | None = None,
    ):
        """Reject the incident; it becomes ``failed`` with a reason."""
        self._guard(
            "reject",
            self.status != IncidentStatus.PROCESSING and not self.is_rejected,
            "incident is running or already rejected",
        )
        self.rejection_reason = reason
        self.correction_data = suggested_corrections
        return self._transition(
            IncidentStatus.FAILED,
            TransitionEvent.REJECTED,
            ["rejection_reason", "correction_data"],
            actor=actor,
            detail={"reason": reason},
        )

    @locked_transition
    def apply_corrections(
        self,
        corrections: dict[str, Any],
        actor: str,
        correction_data: dict[str, Any] | None = None,
    ):
        """
        Apply corrected text/type; ``failed(+reason) -> pending_reprocess``.

        Other correction keys are kept in ``correction_data`` but not applied.
        """
        self._guard("correct", self.is_rejected, "only rejected incidents accept corrections")
        if corrections.get("text"):
            self.text = corrections["text"]
        if corrections.get("incident_type"):
            declared = corrections["incident_type"]
            self.declared_type = None if declared == "auto" else declared
        self.correction_data = correction_data if correction_data is not None else corrections
        return self._transition(
            IncidentStatus.PENDING_REPROCESS,
            TransitionEvent.CORRECTED,
            ["text", "declared_type", "correction_data"],
            actor=actor,
            detail={"fields": sorted(corrections)},
        )

    @locked_transition
    def begin_reprocess(self, actor: str = "system"):
        """Start a new run from corrected fields; ``pending_reprocess -> processing``."""
        self._guard(
            "reprocess",
            self.status == IncidentStatus.PENDING_REPROCESS,
            "reprocess requires pending_reprocess",
        )
        self.rejection_reason = None
        self.error_message = ""
        return self._transition(
            IncidentStatus.PROCESSING,
            TransitionEvent.REPROCESS_STARTED,
            ["rejection_reason", "error_message"],
            actor=actor,
        )


class IncidentTransition(AppendOnlyModel):
    """Immutable history entry for one incident state transition."""

    incident = models.ForeignKey(Incident, on_delete=models.CASCADE, related_name="transitions")
    from_status = models.CharField(max_length=20, blank=True, default="")
    to_status = models.CharField(max_length=20, choices=IncidentStatus.choices)
    event = models.CharField(max_length=30, choices=TransitionEvent.choices)
    actor = models.CharField(max_length=255, default="system")
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["incident", "created_at", "id"]

    def __str__(self):
        return f"{self.incident_id}: {self.from_status or '-'} -> {self.to_status} ({self.event})"


class AuditRecord(AppendOnlyModel):
    """
    Provenance record for one completed pipeline run.

    Records for the same incident are chained through ``previous_record``
    and numbered by ``run_number``.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    incident = models.ForeignKey(Incident, on_delete=models.CASCADE, related_name="audit_records")
    run_number = models.PositiveIntegerField()
    previous_record = models.OneToOneField(
        "self",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="next_record",
    )
    batch = models.ForeignKey(
        Batch,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_records",
    )
    trace_id = models.CharField(max_length=64, db_index=True)
    execution_backend = models.CharField(max_length=20, default="direct")

    input_snapshot = models.JSONField(help_text="Canonical intake record for the run.")
    stages = models.JSONField(
        default=dict,
        help_text="Per-stage outputs, each with started_at/completed_at/duration_ms.",
    )
    final_decision = models.JSONField(help_text="Route, rules, severity and review outcome.")
    similar_incidents = models.JSONField(default=list, blank=True)
    correction_context = models.JSONField(
        null=True,
        blank=True,
        help_text="Original and corrected snapshots for reprocess runs.",
    )
    external_data_sources = models.JSONField(default=list, blank=True)
    credits_used = models.PositiveIntegerField(default=0)
    total_duration_ms = models.FloatField(default=0.0)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["incident", "run_number"]
        constraints = [
            models.UniqueConstraint(fields=["incident", "run_number"], name="unique_audit_run"),
        ]

    def __str__(self):
        return f"Audit {self.incident_id} run {self.run_number}"


class RejectionRecord(AppendOnlyModel):
    incident = models.ForeignKey(Incident, on_delete=models.CASCADE, related_name="rejections")
    reason = models.TextField()
    actor = models.CharField(max_length=255)
    previous_status = models.CharField(max_length=20, choices=IncidentStatus.choices)
    suggested_corrections = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["incident", "created_at", "id"]

    def __str__(self):
        return f"Rejection of {self.incident_id} by {self.actor}"


class CorrectionRecord(AppendOnlyModel):
    incident = models.ForeignKey(Incident, on_delete=models.CASCADE, related_name="corrections")
    rejection = models.ForeignKey(
        RejectionRecord,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="corrections",
    )
    original_snapshot = models.JSONField(help_text="Field values before the correction.")
    corrections = models.JSONField()
    actor = models.CharField(max_length=255)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["incident", "created_at", "id"]

    def __str__(self):
        return f"Correction of {self.incident_id} by {self.actor}"

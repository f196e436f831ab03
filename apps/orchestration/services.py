"""
Caller-facing incident operations: submit, get, list.

These are the functions an HTTP layer, a Celery task or a management command
calls. Validation, credit, state and not-found errors are raised
synchronously; pipeline failures come back on the RunOutcome.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models, transaction

from apps.credits.ledger import BaseCreditLedger, get_credit_ledger
from apps.incidents.exceptions import (
    IncidentNotFoundError,
    InsufficientCreditsError,
    SubmissionValidationError,
)
from apps.incidents.models import Batch, Incident, IncidentStatus
from apps.orchestration.dtos import RunOutcome, Submission

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20

SORT_ORDERS = {
    "created": ["-created_at"],
    "severity": ["-severity_score", "-created_at"],
    "updated": ["updated_at"],
}


def credits_per_incident() -> int:
    return int(getattr(settings, "CREDITS_PER_INCIDENT", 1))


def check_credits(submitter: str, required: int, ledger: BaseCreditLedger | None = None) -> int:
    """
    Read the balance once and compare it to what the work needs.

    Nothing is reserved: the debit happens per completed run, so concurrent
    submissions from the same submitter can all pass this check.

    Raises:
        InsufficientCreditsError: If the balance is below ``required``.
    """
    available = (ledger if ledger is not None else get_credit_ledger()).get_balance(submitter)
    if available < required:
        raise InsufficientCreditsError(submitter, required, available)
    return available


def create_incident(
    submission: Submission,
    batch: Batch | None = None,
    batch_index: int | None = None,
) -> Incident:
    """Create a processing incident and its submission history entry."""
    with transaction.atomic():
        incident = Incident.objects.create(
            submitter=submission.submitter,
            text=submission.text,
            declared_type=submission.declared_type,
            image_refs=submission.image_refs,
            audio_refs=submission.audio_refs,
            video_refs=submission.video_refs,
            batch=batch,
            batch_index=batch_index,
        )
        incident.record_submission(actor=submission.submitter)
    return incident


def submit_incident(
    payload: dict[str, Any],
    submitter: str | None = None,
    backend: Any = None,
    ledger: BaseCreditLedger | None = None,
) -> RunOutcome:
    """
    Validate, check credits, create the incident and hand it to the backend.

    Raises:
        SubmissionValidationError: If the payload is malformed.
        InsufficientCreditsError: If the submitter cannot pay for one run.
    """
    from apps.orchestration.backends import get_backend

    submission = Submission.from_payload(payload, submitter=submitter)
    check_credits(submission.submitter, credits_per_incident(), ledger)

    incident = create_incident(submission)
    logger.info(
        f"Incident {incident.id} submitted by {submission.submitter}",
        extra={"incident_id": str(incident.id), "submitter": submission.submitter},
    )
    return (backend if backend is not None else get_backend()).dispatch(incident)


def load(model: type[models.Model], identifier: Any, error_cls: type[Exception]) -> Any:
    """Fetch by primary key, mapping unknown or malformed ids to ``error_cls``."""
    try:
        instance = model.objects.filter(pk=identifier).first()
    except (ValidationError, ValueError):
        instance = None
    if instance is None:
        raise error_cls(identifier)
    return instance


def get_incident(incident_id: Any) -> Incident:
    """
    Raises:
        IncidentNotFoundError: If no incident has this id.
    """
    return load(Incident, incident_id, IncidentNotFoundError)


def paginate(queryset: models.QuerySet, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict[str, Any]:
    page = max(1, int(page))
    limit = max(1, int(limit))
    total = queryset.count()
    offset = (page - 1) * limit
    return {
        "items": list(queryset[offset : offset + limit]),
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def list_incidents(
    severity: str | None = None,
    incident_type: str | None = None,
    status: str | None = None,
    submitter: str | None = None,
    sort: str = "created",
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict[str, Any]:
    """
    List incidents with optional filters, newest first (or by severity).

    Raises:
        SubmissionValidationError: For an unknown status or sort key.
    """
    queryset = Incident.objects.all()
    if severity:
        queryset = queryset.filter(severity_label=severity)
    if incident_type:
        queryset = queryset.filter(incident_type=incident_type)
    if status:
        if status not in IncidentStatus.values:
            raise SubmissionValidationError(f"Unknown status: {status}")
        queryset = queryset.filter(status=status)
    if submitter:
        queryset = queryset.filter(submitter=submitter)
    if sort not in SORT_ORDERS:
        raise SubmissionValidationError(f"Unknown sort: {sort}")
    return paginate(queryset.order_by(*SORT_ORDERS[sort]), page=page, limit=limit)

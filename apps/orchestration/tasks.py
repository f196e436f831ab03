"""Celery tasks for pipeline orchestration.

These tasks wrap the service layer for async execution via Celery. Inputs
and return values are JSON-serializable; caller errors (validation, credits,
state, not found) are returned as error dicts instead of being retried.
"""

from __future__ import annotations

from typing import Any

from celery import shared_task

from apps.incidents.exceptions import IncidentError


@shared_task(bind=True)
def process_incident_task(
    self,
    payload: dict[str, Any],
    submitter: str | None = None,
) -> dict[str, Any]:
    """
    Submit one incident and run it on the configured backend.

    Returns:
        RunOutcome as dict, or an error dict.
    """
    from apps.orchestration.services import submit_incident

    try:
        return submit_incident(payload, submitter=submitter).to_dict()
    except IncidentError as e:
        return e.to_dict()


@shared_task(bind=True)
def process_batch_task(
    self,
    items: list[dict[str, Any]],
    submitter: str,
    parallel: bool = True,
    max_concurrency: int | None = None,
) -> dict[str, Any]:
    """
    Process a batch of incidents.

    Returns:
        BatchResult as dict, or an error dict.
    """
    from apps.orchestration.batch import BatchOrchestrator

    try:
        result = BatchOrchestrator().process_batch(
            items, submitter=submitter, parallel=parallel, max_concurrency=max_concurrency
        )
    except IncidentError as e:
        return e.to_dict()
    return result.to_dict()


@shared_task(bind=True)
def retry_batch_task(self, batch_id: str) -> dict[str, Any]:
    """Re-submit a batch's failed incidents as a new batch."""
    from apps.orchestration.batch import BatchOrchestrator

    try:
        result = BatchOrchestrator().retry_failed_incidents(batch_id)
    except IncidentError as e:
        return e.to_dict()
    if result is None:
        return {"status": "nothing_to_retry", "batch_id": batch_id}
    return result.to_dict()


@shared_task(bind=True)
def reprocess_incident_task(self, incident_id: str, actor: str = "system") -> dict[str, Any]:
    """Reprocess one corrected incident."""
    from apps.orchestration.corrections import reprocess

    try:
        return reprocess(incident_id, actor=actor).to_dict()
    except IncidentError as e:
        return e.to_dict()


@shared_task(bind=True)
def reprocess_pending_task(self, limit: int | None = None) -> dict[str, Any]:
    """Reprocess the oldest incidents waiting on corrections."""
    from apps.orchestration.corrections import batch_reprocess_pending_corrections

    return batch_reprocess_pending_corrections(limit=limit)


@shared_task(bind=True)
def workflow_callback_task(
    self,
    job_id: str,
    status: str,
    result: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Finish a run handed to the workflow runner."""
    from apps.orchestration.workflow import handle_workflow_callback

    try:
        return handle_workflow_callback(job_id, status, result).to_dict()
    except IncidentError as e:
        return e.to_dict()

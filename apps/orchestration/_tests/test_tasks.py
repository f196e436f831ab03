"""Tests for the Celery task wrappers."""

from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase

from apps.incidents.exceptions import InsufficientCreditsError, InvalidTransitionError, NotFoundError
from apps.orchestration.tasks import (
    process_batch_task,
    process_incident_task,
    reprocess_incident_task,
    reprocess_pending_task,
    retry_batch_task,
    workflow_callback_task,
)


class TaskTests(SimpleTestCase):
    @patch("apps.orchestration.services.submit_incident")
    def test_process_incident_returns_outcome_dict(self, mock_submit):
        mock_submit.return_value.to_dict.return_value = {"status": "COMPLETED"}

        result = process_incident_task({"text": "Leak"}, submitter="wallet-a")

        assert result == {"status": "COMPLETED"}
        mock_submit.assert_called_once_with({"text": "Leak"}, submitter="wallet-a")

    @patch("apps.orchestration.services.submit_incident")
    def test_caller_errors_returned_not_raised(self, mock_submit):
        mock_submit.side_effect = InsufficientCreditsError("wallet-a", 1, 0)

        result = process_incident_task({"text": "Leak"}, submitter="wallet-a")

        assert result["error"] == "insufficient_credits"

    @patch("apps.orchestration.batch.BatchOrchestrator")
    def test_process_batch(self, mock_orchestrator):
        mock_orchestrator.return_value.process_batch.return_value.to_dict.return_value = {"total": 2}

        result = process_batch_task([{"text": "a"}, {"text": "b"}], submitter="wallet-a", parallel=False)

        assert result == {"total": 2}
        mock_orchestrator.return_value.process_batch.assert_called_once_with(
            [{"text": "a"}, {"text": "b"}], submitter="wallet-a", parallel=False, max_concurrency=None
        )

    @patch("apps.orchestration.batch.BatchOrchestrator")
    def test_retry_with_nothing_failed(self, mock_orchestrator):
        mock_orchestrator.return_value.retry_failed_incidents.return_value = None

        assert retry_batch_task("batch-1") == {"status": "nothing_to_retry", "batch_id": "batch-1"}

    @patch("apps.orchestration.corrections.reprocess")
    def test_reprocess_incident(self, mock_reprocess):
        mock_reprocess.return_value.to_dict.return_value = {"status": "COMPLETED"}

        assert reprocess_incident_task("inc-1", actor="reviewer") == {"status": "COMPLETED"}
        mock_reprocess.assert_called_once_with("inc-1", actor="reviewer")

    @patch("apps.orchestration.corrections.reprocess")
    def test_reprocess_incident_wrong_state(self, mock_reprocess):
        mock_reprocess.side_effect = InvalidTransitionError("inc-1", "completed", "reprocess")

        assert reprocess_incident_task("inc-1")["error"] == "invalid_state"

    @patch("apps.orchestration.corrections.batch_reprocess_pending_corrections")
    def test_reprocess_pending(self, mock_reprocess):
        mock_reprocess.return_value = {"total": 0, "successful": 0, "failed": 0, "results": []}

        assert reprocess_pending_task(limit=5)["total"] == 0
        mock_reprocess.assert_called_once_with(limit=5)

    @patch("apps.orchestration.workflow.handle_workflow_callback")
    def test_workflow_callback_unknown_job(self, mock_handle):
        mock_handle.side_effect = NotFoundError("Workflow job", "job-9")

        result = workflow_callback_task("job-9", "completed", {})

        assert result == {"error": "not_found", "message": "Workflow job not found: job-9"}

    @patch("apps.orchestration.workflow.handle_workflow_callback")
    def test_workflow_callback_success(self, mock_handle):
        mock_handle.return_value = MagicMock(to_dict=MagicMock(return_value={"status": "COMPLETED"}))

        assert workflow_callback_task("job-1", "completed", {"extracted_fields": {}}) == {"status": "COMPLETED"}

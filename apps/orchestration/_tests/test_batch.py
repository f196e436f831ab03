"""Tests for batch processing."""

from unittest.mock import patch

import pytest
from django.test import TestCase, override_settings

from apps.incidents.exceptions import (
    BatchNotFoundError,
    InsufficientCreditsError,
    SubmissionValidationError,
)
from apps.incidents.models import Batch, BatchStatus, Incident, IncidentStatus
from apps.orchestration._tests.stubs import StubClassifier, make_ledger, make_orchestrator
from apps.orchestration.batch import BatchOrchestrator, get_batch, get_batch_statistics, list_batches


def items(*texts):
    return [{"text": text} for text in texts]


FIVE = items(
    "Broken streetlight on Main St",
    "Kitchen fire in building B",
    "[fail] unreadable report",
    "Someone pulled a knife",
    "Pothole near the library",
)


class ProcessBatchTests(TestCase):
    """Test BatchOrchestrator.process_batch()."""

    def setUp(self):
        self.classifier = StubClassifier(
            fields_by_marker={
                "fire": {"incident_type": "accident", "severity_score": 85},
                "knife": {"incident_type": "harassment", "severity_score": 60, "risk_indicators": ["weapon"]},
            }
        )
        self.ledger = make_ledger(10)
        self.batches = BatchOrchestrator(make_orchestrator(self.classifier, ledger=self.ledger))

    def test_failure_is_isolated_to_its_item(self):
        result = self.batches.process_batch(FIVE, submitter="wallet-a", max_concurrency=2)

        assert result.total == 5
        assert result.processed == 4
        assert result.failed == 1
        assert sorted(result.results) == [0, 1, 2, 3, 4]
        assert result.results[2].status == "FAILED"
        assert "model unavailable" in result.results[2].error
        assert result.results[1].route == "Escalate"
        assert result.results[3].route == "Immediate"

        batch = Batch.objects.get(pk=result.batch_id)
        assert batch.status == BatchStatus.COMPLETED
        assert batch.processed_count + batch.failed_count == batch.total_count

    def test_results_keyed_by_input_index(self):
        result = self.batches.process_batch(FIVE, submitter="wallet-a", max_concurrency=3)

        for index, item in result.results.items():
            incident = Incident.objects.get(pk=item.incident_id)
            assert incident.batch_index == index
            assert incident.text == FIVE[index]["text"]

    def test_credits_debited_per_completed_item(self):
        self.batches.process_batch(FIVE, submitter="wallet-a")
        assert self.ledger.get_balance("wallet-a") == 6

    def test_batch_submitter_is_charged_for_every_item(self):
        payloads = [{"text": "Pothole", "submitter": "someone-else"}]
        result = self.batches.process_batch(payloads, submitter="wallet-a")

        incident = Incident.objects.get(pk=result.results[0].incident_id)
        assert incident.submitter == "wallet-a"

    def test_insufficient_credits_creates_nothing(self):
        self.batches.ledger = make_ledger(3)
        self.batches.orchestrator.ledger = self.batches.ledger

        with pytest.raises(InsufficientCreditsError) as excinfo:
            self.batches.process_batch(FIVE, submitter="wallet-b")

        assert excinfo.value.required == 5
        assert excinfo.value.available == 3
        assert not Batch.objects.exists()
        assert not Incident.objects.exists()

    def test_invalid_items_reported_by_index(self):
        bad = [{"text": "fine"}, {"text": ""}, "not an object"]

        with pytest.raises(SubmissionValidationError) as excinfo:
            self.batches.process_batch(bad, submitter="wallet-a")

        assert excinfo.value.errors == [
            "item 1: text is required",
            "item 2: submission must be an object",
        ]
        assert not Incident.objects.exists()

    def test_empty_batch_rejected(self):
        with pytest.raises(SubmissionValidationError):
            self.batches.process_batch([], submitter="wallet-a")

    def test_sequential_mode(self):
        result = self.batches.process_batch(FIVE, submitter="wallet-a", parallel=False)

        assert result.parallel is False
        assert result.max_concurrency == 1
        assert result.processed == 4
        assert result.failed == 1

    def test_crashed_item_logged_as_error_in_both_modes(self):
        for parallel in (True, False):
            with self.subTest(parallel=parallel):
                with patch.object(
                    self.batches.orchestrator, "execute_stages", side_effect=RuntimeError("worker crashed")
                ):
                    with self.assertLogs("apps.orchestration", level="ERROR") as logs:
                        result = self.batches.process_batch(FIVE[:1], submitter="wallet-a", parallel=parallel)

                assert result.failed == 1
                assert result.results[0].error == "worker crashed"
                messages = [r.getMessage() for r in logs.records if r.levelname == "ERROR"]
                assert "Item 0 failed: worker crashed" in messages

    @override_settings(BATCH_SEQUENTIAL_BASELINE_MS=1000)
    def test_speedup_against_sequential_estimate(self):
        result = self.batches.process_batch(FIVE[:2], submitter="wallet-a")

        assert result.sequential_estimate_ms == 2000
        assert result.speedup_percent > 0
        data = result.to_dict()
        assert [r["index"] for r in data["results"]] == [0, 1]


class RetryFailedIncidentsTests(TestCase):
    def setUp(self):
        self.classifier = StubClassifier(fail_markers=("[fail]",))
        self.batches = BatchOrchestrator(make_orchestrator(self.classifier))

    def test_failed_subset_resubmitted_as_new_batch(self):
        original = self.batches.process_batch(FIVE, submitter="wallet-a")
        self.classifier.fail_markers = ()

        retry = self.batches.retry_failed_incidents(original.batch_id)

        assert retry.retry_of == original.batch_id
        assert retry.total == 1
        assert retry.processed == 1
        retried = Incident.objects.get(pk=retry.results[0].incident_id)
        assert retried.text == "[fail] unreadable report"
        assert retried.submitter == "wallet-a"
        assert retried.status == IncidentStatus.COMPLETED

    def test_nothing_to_retry(self):
        original = self.batches.process_batch(FIVE[:2], submitter="wallet-a")
        assert self.batches.retry_failed_incidents(original.batch_id) is None

    def test_unknown_batch(self):
        with pytest.raises(BatchNotFoundError):
            self.batches.retry_failed_incidents("00000000-0000-0000-0000-000000000000")
        with pytest.raises(BatchNotFoundError):
            get_batch("not-a-uuid")


class BatchQueryTests(TestCase):
    def setUp(self):
        classifier = StubClassifier(fields_by_marker={"fire": {"incident_type": "accident", "severity_score": 85}})
        self.batches = BatchOrchestrator(make_orchestrator(classifier))
        self.result = self.batches.process_batch(FIVE, submitter="wallet-a")

    def test_statistics(self):
        stats = get_batch_statistics(self.result.batch_id)

        assert stats["total_incidents"] == 5
        assert stats["processed"] == 4
        assert stats["failed"] == 1
        assert stats["success_rate"] == 80.0
        assert stats["status"] == BatchStatus.COMPLETED
        assert stats["severity_distribution"] == {"Medium": 3, "Critical": 1, "Unknown": 1}
        assert stats["route_distribution"] == {"LogOnly": 3, "Escalate": 1, "Unknown": 1}
        assert stats["type_distribution"] == {"infrastructure": 3, "accident": 1, "Unknown": 1}
        assert stats["completed_at"] is not None

    def test_list_batches_by_submitter(self):
        assert list_batches(submitter="wallet-a")["total"] == 1
        assert list_batches(submitter="nobody")["items"] == []

"""Tests for monitoring signals."""

from unittest.mock import MagicMock, patch

import pytest
from django.test import SimpleTestCase, override_settings

from apps.orchestration import signals
from apps.orchestration.signals import (
    LoggingBackend,
    SignalTags,
    StatsdBackend,
    emit_batch_completed,
    emit_stage_failed,
    get_monitoring_backend,
)


class SignalTagsTests(SimpleTestCase):
    """Test signal tags."""

    def test_signal_tags_to_dict(self):
        tags = SignalTags(
            trace_id="trace-123",
            run_id="run-456",
            stage="understand",
            incident_id="inc-1",
            submitter="wallet-a",
            batch_id="batch-1",
            run_number=2,
            extra={"custom": "value"},
        )
        data = tags.to_dict()
        assert data["trace_id"] == "trace-123"
        assert data["stage"] == "understand"
        assert data["batch_id"] == "batch-1"
        assert data["run_number"] == 2
        assert data["custom"] == "value"

    def test_for_stage_copies_tags(self):
        tags = SignalTags(trace_id="t", run_id="r", stage="pipeline", incident_id="inc-1")
        decide = tags.for_stage("decide")
        assert decide.stage == "decide"
        assert decide.incident_id == "inc-1"
        assert tags.stage == "pipeline"


class BackendSelectionTests(SimpleTestCase):
    def test_logging_backend_by_default(self):
        assert isinstance(get_monitoring_backend(), LoggingBackend)

    @override_settings(ORCHESTRATION_METRICS_BACKEND="statsd", STATSD_HOST="stats", STATSD_PORT=9125)
    def test_statsd_backend_from_settings(self):
        backend = get_monitoring_backend()
        assert isinstance(backend, StatsdBackend)
        assert backend.host == "stats"
        assert backend.port == 9125

    @override_settings(ORCHESTRATION_METRICS_BACKEND="carrier-pigeon")
    def test_unknown_backend(self):
        with pytest.raises(KeyError):
            get_monitoring_backend()

    def test_logging_backend_warns_on_stage_failure(self):
        tags = SignalTags(trace_id="t", run_id="r", stage="understand", incident_id="inc-1")
        with self.assertLogs("apps.orchestration.signals", level="WARNING") as logs:
            LoggingBackend().emit("pipeline.stage.failed", tags, extra={"error_type": "CollaboratorError"})
        assert "stage=understand incident=inc-1" in logs.output[0]


class StatsdBackendTests(SimpleTestCase):
    def setUp(self):
        self.backend = StatsdBackend()
        self.backend._client = MagicMock()
        self.tags = SignalTags(trace_id="t", run_id="r", stage="review")

    def test_counter_without_value(self):
        self.backend.emit("pipeline.stage.started", self.tags)
        self.backend._client.incr.assert_called_once_with("pipeline.stage.started.review")

    def test_duration_is_timing(self):
        self.backend.emit("pipeline.stage.duration", self.tags, value=12.5)
        self.backend._client.timing.assert_called_once_with("pipeline.stage.duration.review", 12.5)

    def test_other_values_are_gauges(self):
        self.backend.emit("pipeline.stage.failure_count", self.tags, value=1)
        self.backend._client.gauge.assert_called_once_with("pipeline.stage.failure_count.review", 1)

    def test_completed_runs_counted_by_status(self):
        tags = SignalTags(trace_id="t", run_id="r", stage="pipeline")
        self.backend.emit("pipeline.completed", tags, extra={"final_status": "FAILED", "duration_ms": 4.0})
        self.backend._client.incr.assert_called_once_with("pipeline.completed.pipeline.failed")


class EmitTests(SimpleTestCase):
    def setUp(self):
        self.backend = MagicMock()
        patcher = patch.object(signals, "_backend", self.backend)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.tags = SignalTags(trace_id="t", run_id="r", stage="decide", incident_id="inc-1")

    def test_stage_failed_emits_failure_and_duration(self):
        emit_stage_failed(self.tags, error_type="StageExecutionError", error_message="boom", duration_ms=3.0)

        names = [c.args[0] for c in self.backend.emit.call_args_list]
        assert names == [
            "pipeline.stage.failed",
            "pipeline.stage.duration",
            "pipeline.stage.failure_count",
        ]
        extra = self.backend.emit.call_args_list[0].kwargs["extra"]
        assert extra["error_message"] == "boom"

    def test_batch_completed_carries_counts(self):
        emit_batch_completed(self.tags, total=5, processed=4, failed=1, duration_ms=100.0)

        first = self.backend.emit.call_args_list[0]
        assert first.args[0] == "batch.completed"
        assert first.kwargs["extra"] == {"total": 5, "processed": 4, "failed": 1, "duration_ms": 100.0}

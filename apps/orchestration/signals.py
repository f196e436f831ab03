"""
Monitoring signals for the incident pipeline.

Every run reports its boundaries through one configured backend
(``ORCHESTRATION_METRICS_BACKEND``): structured log lines by default, StatsD
counters and timings when the ``statsd`` extra is installed. Tags identify the
run (trace_id/run_id, run_number), the incident and its submitter, the batch
it belongs to, and the stage that emitted the signal.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any

from django.conf import settings

logger = logging.getLogger("apps.orchestration.signals")

PIPELINE_STARTED = "pipeline.started"
PIPELINE_COMPLETED = "pipeline.completed"
PIPELINE_DURATION = "pipeline.duration"
STAGE_STARTED = "pipeline.stage.started"
STAGE_SUCCEEDED = "pipeline.stage.succeeded"
STAGE_FAILED = "pipeline.stage.failed"
STAGE_DURATION = "pipeline.stage.duration"
STAGE_FAILURE_COUNT = "pipeline.stage.failure_count"
BATCH_COMPLETED = "batch.completed"
BATCH_DURATION = "batch.duration"


@dataclass
class SignalTags:
    """Identifies which run, incident and stage a signal belongs to."""

    trace_id: str
    run_id: str
    stage: str  # pipeline, intake, understand, decide, review, audit, batch
    incident_id: str | None = None
    submitter: str = ""
    batch_id: str | None = None
    run_number: int = 1
    extra: dict[str, Any] = field(default_factory=dict)

    def for_stage(self, stage: str) -> SignalTags:
        return replace(self, stage=stage)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "trace_id": self.trace_id,
            "run_id": self.run_id,
            "stage": self.stage,
            "incident_id": self.incident_id,
            "submitter": self.submitter,
            "batch_id": self.batch_id,
            "run_number": self.run_number,
        }
        data.update(self.extra)
        return data


class MonitoringBackend(ABC):
    """Destination for monitoring signals."""

    @abstractmethod
    def emit(
        self,
        signal_name: str,
        tags: SignalTags,
        value: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        raise NotImplementedError


class LoggingBackend(MonitoringBackend):
    """Writes each signal as one log record; failures are logged as warnings."""

    def emit(self, signal_name, tags, value=None, extra=None):
        payload = {"signal": signal_name, "value": value, **tags.to_dict(), **(extra or {})}
        level = logging.WARNING if signal_name == STAGE_FAILED else logging.INFO
        logger.log(
            level,
            f"[SIGNAL] {signal_name} stage={tags.stage} incident={tags.incident_id}",
            extra={"signal_data": payload},
        )


class StatsdBackend(MonitoringBackend):
    """
    StatsD counters, gauges and timings (requires the ``statsd`` extra).

    Metric names are ``<signal>.<stage>``; completed runs are also counted
    per final status (``pipeline.completed.pipeline.failed``).
    """

    def __init__(self, host: str = "localhost", port: int = 8125, prefix: str = "pipeline"):
        self.host = host
        self.port = port
        self.prefix = prefix
        self._client = None

    @property
    def client(self):
        if self._client is None:
            import statsd

            self._client = statsd.StatsClient(self.host, self.port, prefix=self.prefix)
        return self._client

    def emit(self, signal_name, tags, value=None, extra=None):
        metric = f"{signal_name}.{tags.stage}"
        final_status = (extra or {}).get("final_status")
        if final_status:
            metric = f"{metric}.{str(final_status).lower()}"

        if value is None:
            self.client.incr(metric)
        elif signal_name.endswith(".duration"):
            self.client.timing(metric, value)
        else:
            self.client.gauge(metric, value)


METRICS_BACKENDS: dict[str, type[MonitoringBackend]] = {
    "logging": LoggingBackend,
    "statsd": StatsdBackend,
}


def get_monitoring_backend() -> MonitoringBackend:
    """
    Build the backend named by ORCHESTRATION_METRICS_BACKEND.

    Raises:
        KeyError: If the name is not registered.
    """
    name = getattr(settings, "ORCHESTRATION_METRICS_BACKEND", "logging")
    if name not in METRICS_BACKENDS:
        raise KeyError(f"Unknown metrics backend: {name}. Available: {list(METRICS_BACKENDS)}")

    if name == "statsd":
        return StatsdBackend(
            host=getattr(settings, "STATSD_HOST", "localhost"),
            port=int(getattr(settings, "STATSD_PORT", 8125)),
            prefix=getattr(settings, "STATSD_PREFIX", "pipeline"),
        )
    return METRICS_BACKENDS[name]()


_backend: MonitoringBackend | None = None


def _get_backend() -> MonitoringBackend:
    global _backend
    if _backend is None:
        _backend = get_monitoring_backend()
    return _backend


def _emit(signal_name: str, tags: SignalTags, value: float | None = None, **extra: Any) -> None:
    _get_backend().emit(signal_name, tags, value=value, extra=extra or None)


def emit_stage_started(tags: SignalTags) -> None:
    _emit(STAGE_STARTED, tags)


def emit_stage_succeeded(tags: SignalTags, duration_ms: float) -> None:
    _emit(STAGE_SUCCEEDED, tags, duration_ms=duration_ms)
    _emit(STAGE_DURATION, tags, value=duration_ms)


def emit_stage_failed(tags: SignalTags, error_type: str, error_message: str, duration_ms: float) -> None:
    """A stage failure aborts the run, so it is reported with its timing and counted."""
    _emit(STAGE_FAILED, tags, error_type=error_type, error_message=error_message, duration_ms=duration_ms)
    _emit(STAGE_DURATION, tags, value=duration_ms)
    _emit(STAGE_FAILURE_COUNT, tags, value=1)


def emit_pipeline_started(tags: SignalTags) -> None:
    _emit(PIPELINE_STARTED, tags)


def emit_pipeline_completed(tags: SignalTags, duration_ms: float, status: str) -> None:
    """Reported once per run, whether it completed, failed or was handed to the workflow runner."""
    _emit(PIPELINE_COMPLETED, tags, duration_ms=duration_ms, final_status=status)
    _emit(PIPELINE_DURATION, tags, value=duration_ms)


def emit_batch_completed(tags: SignalTags, total: int, processed: int, failed: int, duration_ms: float) -> None:
    _emit(BATCH_COMPLETED, tags, total=total, processed=processed, failed=failed, duration_ms=duration_ms)
    _emit(BATCH_DURATION, tags, value=duration_ms)

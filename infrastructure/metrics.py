"""Prometheus metrics for the audio analysis pipeline.

Labels carry pipeline vocabulary (stage names, soft-failure kinds) so a
dashboard shows where runs spend time and which optional stages degrade,
not just generic HTTP stats.

Metrics:
    pipeline_runs_total              Counter by terminal status (success/failure/cancelled)
    pipeline_stage_seconds           Histogram of per-stage wall time
    pipeline_soft_failures_total     Counter of absorbed failures by kind
                                     (upload/annotation/extractor)
    progress_events_dropped_total    Events discarded by a full progress channel

Usage::

    from infrastructure.metrics import StageTimer, record_run

    with StageTimer("technical_analysis"):
        features = stage.run(source)
    record_run(status="success")
"""

from __future__ import annotations

import logging
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

_REGISTRY = CollectorRegistry()

pipeline_runs_total = Counter(
    "audio_pipeline_runs_total",
    "Completed pipeline runs by terminal status",
    ["status"],
    registry=_REGISTRY,
)

pipeline_stage_seconds = Histogram(
    "audio_pipeline_stage_seconds",
    "Wall-clock time per pipeline stage in seconds",
    ["stage"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=_REGISTRY,
)

pipeline_soft_failures_total = Counter(
    "audio_pipeline_soft_failures_total",
    "Failures absorbed without failing the run, by kind",
    ["kind"],
    registry=_REGISTRY,
)

progress_events_dropped_total = Counter(
    "audio_pipeline_progress_events_dropped_total",
    "Progress events discarded because the consumer fell behind",
    registry=_REGISTRY,
)


def record_run(*, status: str) -> None:
    """Record a finished run.

    Args:
        status: "success", "failure" or "cancelled".
    """
    pipeline_runs_total.labels(status=status).inc()


def record_stage(stage: str, seconds: float) -> None:
    """Observe one stage duration."""
    pipeline_stage_seconds.labels(stage=stage).observe(seconds)


def record_soft_failure(kind: str) -> None:
    """Count a failure that degraded, but did not fail, a run."""
    pipeline_soft_failures_total.labels(kind=kind).inc()


def record_progress_dropped(count: int = 1) -> None:
    if count > 0:
        progress_events_dropped_total.inc(count)


def get_metrics_response() -> tuple[bytes, str]:
    """Generate Prometheus text exposition format.

    Returns:
        Tuple of (body_bytes, content_type_string).
    """
    return generate_latest(_REGISTRY), CONTENT_TYPE_LATEST


class StageTimer:
    """Context manager that times a block and records it under ``stage``.

    The duration is recorded even when the block raises.

    Usage::

        with StageTimer("upload") as t:
            outcome = uploader.upload(path)
        logger.info("upload took %.2fs", t.elapsed)
    """

    def __init__(self, stage: str) -> None:
        self.stage = stage
        self._start: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> StageTimer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *_: object) -> None:
        self.elapsed = time.perf_counter() - self._start
        record_stage(self.stage, self.elapsed)

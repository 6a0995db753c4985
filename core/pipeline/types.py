"""
core/pipeline/types.py — Run state machine and per-stage result types.

Every value passed between stages is a typed, frozen dataclass; an absent
optional result is ``None``, never a missing key.

State machine:

    PREPARING ──► TECHNICAL_ANALYSIS ‖ UPLOADING ──► CREATIVE_ANNOTATION
                                                         │
                                       FAILED ◄──────────┼──► COMPILING ──► DONE

The two parallel branches are tracked as a set of active branches on the
run; ``stage`` reports TECHNICAL_ANALYSIS while any branch is active.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from core.audio.types import FeatureSet


class PipelineStage(str, Enum):
    PREPARING = "preparing"
    TECHNICAL_ANALYSIS = "technical_analysis"
    UPLOADING = "uploading"
    CREATIVE_ANNOTATION = "creative_annotation"
    COMPILING = "compiling"
    DONE = "done"
    FAILED = "failed"


class AnalysisStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


TERMINAL_STAGES: frozenset[PipelineStage] = frozenset({PipelineStage.DONE, PipelineStage.FAILED})

# Legal transitions. Any non-terminal stage may also go to FAILED.
_TRANSITIONS: dict[PipelineStage, frozenset[PipelineStage]] = {
    PipelineStage.PREPARING: frozenset(
        {PipelineStage.TECHNICAL_ANALYSIS, PipelineStage.UPLOADING}
    ),
    PipelineStage.TECHNICAL_ANALYSIS: frozenset({PipelineStage.CREATIVE_ANNOTATION}),
    PipelineStage.UPLOADING: frozenset({PipelineStage.CREATIVE_ANNOTATION}),
    PipelineStage.CREATIVE_ANNOTATION: frozenset({PipelineStage.COMPILING}),
    PipelineStage.COMPILING: frozenset({PipelineStage.DONE}),
    PipelineStage.DONE: frozenset(),
    PipelineStage.FAILED: frozenset(),
}

_PARALLEL_BRANCHES: frozenset[PipelineStage] = frozenset(
    {PipelineStage.TECHNICAL_ANALYSIS, PipelineStage.UPLOADING}
)


class InvalidTransitionError(ValueError):
    """Raised when a PipelineRun is moved along an edge the state machine lacks."""


class PipelineRun:
    """State of one pipeline invocation.

    Thread-safe: both parallel branches report into the same run.

    Attributes:
        id: Random hex identifier, unique per run.
        started_at: Monotonic start time (``time.monotonic()``).
        history: Every stage entered, in order.
    """

    def __init__(self, run_id: str | None = None) -> None:
        self.id = run_id or uuid.uuid4().hex
        self.started_at = time.monotonic()
        self._stage = PipelineStage.PREPARING
        self._active_branches: set[PipelineStage] = set()
        self._lock = threading.Lock()
        self.history: list[PipelineStage] = [PipelineStage.PREPARING]

    @property
    def stage(self) -> PipelineStage:
        with self._lock:
            return self._stage

    @property
    def active_branches(self) -> frozenset[PipelineStage]:
        with self._lock:
            return frozenset(self._active_branches)

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000.0

    def start_branches(self) -> None:
        """PREPARING → TECHNICAL_ANALYSIS ‖ UPLOADING."""
        with self._lock:
            if self._stage is not PipelineStage.PREPARING:
                raise InvalidTransitionError(
                    f"branches can only start from {PipelineStage.PREPARING.value}, "
                    f"run is {self._stage.value}"
                )
            self._active_branches = set(_PARALLEL_BRANCHES)
            self._stage = PipelineStage.TECHNICAL_ANALYSIS
            self.history.extend(sorted(_PARALLEL_BRANCHES, key=lambda s: s.value))

    def finish_branch(self, branch: PipelineStage) -> None:
        """Mark one parallel branch as finished (idempotent)."""
        if branch not in _PARALLEL_BRANCHES:
            raise InvalidTransitionError(f"{branch.value} is not a parallel branch")
        with self._lock:
            self._active_branches.discard(branch)

    def advance(self, target: PipelineStage) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If the edge does not exist, the run is
                terminal, or the join is attempted with a branch still running.
        """
        with self._lock:
            current = self._stage
            if current in TERMINAL_STAGES:
                raise InvalidTransitionError(f"run {self.id} already {current.value}")
            if target is PipelineStage.FAILED:
                self._active_branches.clear()
            elif target not in _TRANSITIONS[current]:
                raise InvalidTransitionError(f"{current.value} → {target.value} is not allowed")
            elif target is PipelineStage.CREATIVE_ANNOTATION and self._active_branches:
                pending = ", ".join(sorted(b.value for b in self._active_branches))
                raise InvalidTransitionError(f"join before branches finished: {pending}")
            self._stage = target
            self.history.append(target)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProgressEvent:
    """One progress notification.

    Invariants:
        type in {"progress", "result"}
        status is None or "complete"
    """

    type: str
    message: str
    step_name: str
    status: str | None = None
    result: dict[str, Any] | None = None
    """Full AnalysisResult dict, set only on the terminal ``result`` event."""

    def __post_init__(self) -> None:
        if self.type not in {"progress", "result"}:
            raise ValueError(f"type must be 'progress' or 'result', got {self.type!r}")
        if self.status not in {None, "complete"}:
            raise ValueError(f"status must be None or 'complete', got {self.status!r}")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "message": self.message,
            "step_name": self.step_name,
        }
        if self.status is not None:
            data["status"] = self.status
        if self.result is not None:
            data["result"] = self.result
        return data


# ---------------------------------------------------------------------------
# Stage results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UploadOutcome:
    """Result of the upload branch: a URL, or the reason there is none."""

    url: str | None = None
    expires_at: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.url is not None


@dataclass(frozen=True)
class BranchResults:
    """Both parallel branch outputs, available together only after the join."""

    technical: FeatureSet
    upload: UploadOutcome


@dataclass(frozen=True)
class AnalysisResult:
    """Terminal output of a pipeline run.

    Invariants:
        status == FAILURE  ⇔  technical is None
    """

    status: AnalysisStatus
    file_name: str
    technical: FeatureSet | None
    creative: str | None
    message: str
    final_message: str
    run_id: str = ""
    processing_time_ms: float = 0.0
    skipped_stages: tuple[str, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.status is AnalysisStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "file_name": self.file_name,
            "technical": self.technical.to_dict() if self.technical is not None else None,
            "creative": self.creative,
            "message": self.message,
            "final_message": self.final_message,
            "run_id": self.run_id,
            "processing_time_ms": round(self.processing_time_ms, 1),
            "skipped_stages": list(self.skipped_stages),
        }

"""
api/schemas/analysis.py — Pydantic request/response schemas for audio analysis.

Covers:
    /analyze/audio          — AudioAnalysisRequest / AnalysisResponse
    /analyze/audio/stream   — AudioAnalysisRequest → SSE of ProgressEventOut
"""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Shared sub-schemas
# ---------------------------------------------------------------------------


class ChordEventOut(BaseModel):
    """One chord change in the smoothed progression."""

    label: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    timestamp_seconds: float = Field(..., ge=0.0)


class FeatureSetOut(BaseModel):
    """Technical features. Absent extractor results are null."""

    duration_seconds: float
    sample_rate: int
    bpm: float | None = None
    beats_count: int | None = None
    rhythm_confidence: float | None = None
    onset_rate: float | None = None
    key: str | None = None
    scale: str | None = None
    key_strength: float | None = None
    energy: float | None = None
    loudness: float | None = None
    rms: float | None = None
    dynamic_complexity: float | None = None
    spectral_centroid: float | None = None
    spectral_rolloff: float | None = None
    spectral_flatness: float | None = None
    zero_crossing_rate: float | None = None
    danceability: float | None = None
    mfcc: list[float] | None = None
    mel_bands: list[float] | None = None
    spectral_contrast: list[float] | None = None
    hpcp: list[float] | None = None
    chords: list[ChordEventOut] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# /analyze/audio
# ---------------------------------------------------------------------------


class AudioAnalysisRequest(BaseModel):
    """Request body for POST /analyze/audio and /analyze/audio/stream.

    Exactly one of ``file_path`` or ``audio_data`` must be given.
    """

    file_path: str | None = Field(
        default=None,
        description="Absolute path to an audio file on the server filesystem.",
    )
    audio_data: str | None = Field(
        default=None,
        description="Base64 audio, or a data URL (data:audio/wav;base64,...).",
    )
    file_name: str | None = Field(
        default=None,
        max_length=255,
        description="Display name used in messages. Defaults to the file's basename.",
    )

    @field_validator("file_path")
    @classmethod
    def file_path_must_be_absolute(cls, v: str | None) -> str | None:
        """Reject relative paths; the server's working directory is not the caller's."""
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("file_path must be a non-empty string")
        if not os.path.isabs(v):
            raise ValueError(f"file_path must be absolute, got {v!r}")
        return v

    @field_validator("audio_data")
    @classmethod
    def audio_data_not_blank(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("audio_data must be a non-empty string")
        return v

    @model_validator(mode="after")
    def exactly_one_input(self) -> AudioAnalysisRequest:
        if (self.file_path is None) == (self.audio_data is None):
            raise ValueError("provide exactly one of file_path or audio_data")
        return self


class AnalysisResponse(BaseModel):
    """Response body for POST /analyze/audio.

    A failed analysis is still a 200 with ``status="failure"``.
    """

    status: str
    file_name: str
    technical: FeatureSetOut | None = None
    creative: str | None = None
    message: str
    final_message: str
    run_id: str = ""
    processing_time_ms: float = 0.0
    skipped_stages: list[str] = Field(default_factory=list)


class ProgressEventOut(BaseModel):
    """One Server-Sent Event payload on /analyze/audio/stream."""

    type: str
    message: str
    step_name: str
    status: str | None = None
    result: dict[str, Any] | None = None

"""
core/audio/types.py — Frozen data types for audio analysis results.

All types are frozen dataclasses — immutable value objects that can be
safely passed between pipeline stages and threads.

Design principles:
    - No I/O, no state, no side effects.
    - Every extracted scalar/vector is ``Optional``: ``None`` means the
      extractor failed or was not run, never "zero".
    - ``duration_seconds`` and ``sample_rate`` are required — they are
      computed locally from the decoded signal, never delegated.
    - Vector features are tuples so a FeatureSet is hashable and comparable.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class AudioSource:
    """A file handed to the pipeline for one run.

    ``path`` is expected to be absolute. It is not checked here: the
    orchestrator turns a relative, missing or non-audio path into a failed run.
    """

    path: str
    """Absolute path of the audio file on the local filesystem."""

    display_name: str | None = None
    """Name shown to the user. Falls back to the file's basename."""

    @property
    def file_name(self) -> str:
        """Display name, or the basename of ``path`` when none was given."""
        if self.display_name:
            return self.display_name
        return self.path.replace("\\", "/").rsplit("/", 1)[-1]


@dataclass(frozen=True)
class ChordEvent:
    """A chord label anchored at a point in time.

    Produced per frame by the chord tracker (raw) and per run by the
    smoother (denoised).

    Invariants:
        0.0 <= confidence <= 1.0
        timestamp_seconds >= 0
    """

    label: str
    """Chord name, e.g. 'C', 'Am', 'F#m'."""

    confidence: float
    """Classifier strength for a raw event, mean strength for a smoothed one."""

    timestamp_seconds: float
    """Start time in seconds from the beginning of the audio."""

    def __post_init__(self) -> None:
        if not self.label:
            raise ValueError("ChordEvent.label must not be empty")
        if not (0.0 <= self.confidence <= 1.0):
            raise ValueError(f"ChordEvent.confidence must be in [0, 1], got {self.confidence}")
        if self.timestamp_seconds < 0:
            raise ValueError(
                f"ChordEvent.timestamp_seconds must be >= 0, got {self.timestamp_seconds}"
            )


@dataclass(frozen=True)
class Key:
    """Musical key detected via Krumhansl-Schmuckler algorithm.

    Invariants:
        mode in {"major", "minor"}
        0.0 <= confidence <= 1.0
        root is a valid note name (e.g. "C", "A#", "Bb")
    """

    root: str
    """Root note name, e.g. 'A', 'C#', 'Bb'."""

    mode: str
    """'major' or 'minor'."""

    confidence: float
    """Pearson correlation of best K-S match. Range [0.0, 1.0].
    Values above 0.8 indicate strong tonal centre."""

    @property
    def label(self) -> str:
        """Human-readable key label, e.g. 'A minor', 'C# major'."""
        return f"{self.root} {self.mode}"


@dataclass(frozen=True)
class RhythmEstimate:
    """Output of the full rhythm-extraction tier of BPM detection."""

    bpm: float
    beats_count: int
    confidence: float


@dataclass(frozen=True)
class FeatureSet:
    """Deterministic technical features of one audio file.

    Each optional field is populated independently; a failing extractor
    leaves only its own field as ``None``.

    Invariants:
        duration_seconds > 0
        sample_rate > 0
        chords ordered by strictly increasing timestamp, no two
        consecutive entries share a label
    """

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

    mfcc: tuple[float, ...] | None = None
    mel_bands: tuple[float, ...] | None = None
    spectral_contrast: tuple[float, ...] | None = None
    hpcp: tuple[float, ...] | None = None

    chords: tuple[ChordEvent, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.duration_seconds <= 0:
            raise ValueError(
                f"FeatureSet.duration_seconds must be > 0, got {self.duration_seconds}"
            )
        if self.sample_rate <= 0:
            raise ValueError(f"FeatureSet.sample_rate must be > 0, got {self.sample_rate}")
        for previous, current in zip(self.chords, self.chords[1:]):
            if current.timestamp_seconds <= previous.timestamp_seconds:
                raise ValueError("FeatureSet.chords must have strictly increasing timestamps")
            if current.label == previous.label:
                raise ValueError(
                    f"FeatureSet.chords repeats {current.label!r} at {current.timestamp_seconds}"
                )

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict view for JSON serialization (tuples become lists)."""
        data = asdict(self)
        for name in ("mfcc", "mel_bands", "spectral_contrast", "hpcp"):
            if data[name] is not None:
                data[name] = list(data[name])
        data["chords"] = [dict(c) for c in data["chords"]]
        return data

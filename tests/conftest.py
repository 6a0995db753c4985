"""
Shared fixtures for the test suite.

Centralizes reusable test infrastructure so individual test files
don't need to repeat fake-backend / fake-collaborator boilerplate.

FakeBackend satisfies FeatureExtractionPort without librosa: frame ``i``
is a constant array filled with ``i``, and the frame chain carries that
index through to ``chords_detection``, which looks up ``chord_labels[i]``.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from pathlib import Path

import numpy as np
import pytest

from core.audio.port import NO_CHORD
from core.audio.types import FeatureSet, Key, RhythmEstimate
from core.generation.base import GenerationRequest, GenerationResponse
from core.pipeline.cancellation import CancellationToken
from core.pipeline.types import ProgressEvent, UploadOutcome

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SAMPLE_RATE = 22050
"""Sample rate of the fake decoded signal."""

FAKE_URL = "https://litter.catbox.moe/abc123.wav"
"""URL returned by the fake upload stage."""

FAKE_COMMENTARY = "Warm analog pad over a four-on-the-floor kick."
"""Text returned by the fake annotator and provider."""

# 10 C, 10 G, 10 Am, 12 F frames → 42 frames at 4096/2048 over 4 s
DEFAULT_CHORD_LABELS: tuple[str, ...] = ("C",) * 10 + ("G",) * 10 + ("Am",) * 10 + ("F",) * 12


# ---------------------------------------------------------------------------
# Fake DSP backend
# ---------------------------------------------------------------------------


class FakeBackend:
    """Deterministic FeatureExtractionPort — no librosa, no files.

    Args:
        signal: Signal returned by ``decode``. Defaults to 4 s of noise-free ramp.
        sample_rate: Rate returned by ``decode``.
        chord_labels: Label per frame index; frames past the end are "no chord".
        fail: Names of methods that raise RuntimeError.
        fail_frames: Frame indices whose chain raises in ``hpcp``.
    """

    def __init__(
        self,
        signal: np.ndarray | None = None,
        sample_rate: int = SAMPLE_RATE,
        *,
        chord_labels: tuple[str, ...] = DEFAULT_CHORD_LABELS,
        fail: frozenset[str] | set[str] = frozenset(),
        fail_frames: frozenset[int] | set[int] = frozenset(),
    ) -> None:
        if signal is None:
            signal = np.linspace(-0.5, 0.5, sample_rate * 4)
        self.signal = signal
        self.sample_rate = sample_rate
        self.chord_labels = chord_labels
        self.fail = frozenset(fail)
        self.fail_frames = frozenset(fail_frames)
        self.decoded_paths: list[str] = []

    def _check(self, name: str) -> None:
        if name in self.fail:
            raise RuntimeError(f"{name} exploded")

    def decode(self, path: str) -> tuple[np.ndarray, int]:
        self._check("decode")
        self.decoded_paths.append(path)
        return self.signal, self.sample_rate

    def frame_generator(
        self, signal: np.ndarray, frame_size: int, hop_size: int
    ) -> Iterator[np.ndarray]:
        if signal.size == 0:
            return
        # Same framing as the real backend: a short signal is one padded frame
        n_frames = 1 + max(0, signal.size - frame_size) // hop_size
        for index in range(n_frames):
            yield np.full(frame_size, float(index))

    def windowing(self, frame: np.ndarray) -> np.ndarray:
        return frame

    def spectrum(self, frame: np.ndarray) -> np.ndarray:
        return frame

    def spectral_peaks(self, spectrum, sample_rate, **_kwargs):
        return np.array([spectrum[0]]), np.array([1.0])

    def spectral_whitening(self, spectrum, frequencies, magnitudes, sample_rate, **_kwargs):
        return frequencies, magnitudes

    def hpcp(self, frequencies, magnitudes, **_kwargs) -> np.ndarray:
        index = int(frequencies[0])
        if index in self.fail_frames:
            raise ValueError(f"frame {index} is corrupt")
        return np.full(12, float(index))

    def chords_detection(self, hpcp: np.ndarray) -> tuple[str, float]:
        index = int(hpcp[0])
        if index >= len(self.chord_labels):
            return NO_CHORD, 0.0
        return self.chord_labels[index], 0.9

    def percival_bpm(self, signal, sample_rate) -> float:
        self._check("percival_bpm")
        return 128.0

    def rhythm_extractor(self, signal, sample_rate) -> RhythmEstimate:
        self._check("rhythm_extractor")
        return RhythmEstimate(bpm=127.5, beats_count=16, confidence=3.2)

    def onset_rate(self, signal, sample_rate) -> float:
        self._check("onset_rate")
        return 2.0

    def key(self, signal, sample_rate) -> Key:
        self._check("key")
        return Key(root="C", mode="major", confidence=0.8)

    def energy(self, signal) -> float:
        self._check("energy")
        return 1234.5

    def loudness(self, signal) -> float:
        self._check("loudness")
        return 118.0

    def rms(self, signal) -> float:
        self._check("rms")
        return 0.1

    def dynamic_complexity(self, signal, sample_rate) -> float:
        self._check("dynamic_complexity")
        return 3.0

    def spectral_centroid(self, signal, sample_rate) -> float:
        self._check("spectral_centroid")
        return 1500.0

    def spectral_rolloff(self, signal, sample_rate) -> float:
        self._check("spectral_rolloff")
        return 4000.0

    def spectral_flatness(self, signal) -> float:
        self._check("spectral_flatness")
        return 0.1

    def zero_crossing_rate(self, signal) -> float:
        self._check("zero_crossing_rate")
        return 0.05

    def danceability(self, signal, sample_rate) -> float:
        self._check("danceability")
        return 0.6

    def mfcc(self, signal, sample_rate) -> np.ndarray:
        self._check("mfcc")
        return np.arange(13, dtype=np.float64)

    def mel_bands(self, signal, sample_rate) -> np.ndarray:
        self._check("mel_bands")
        return np.ones(24)

    def spectral_contrast(self, signal, sample_rate) -> np.ndarray:
        self._check("spectral_contrast")
        return np.ones(7)


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeUploadStage:
    """Stands in for UploadStage. Never touches the network."""

    def __init__(
        self,
        url: str | None = FAKE_URL,
        *,
        error: str = "host unreachable",
        raises: Exception | None = None,
        on_upload=None,
    ) -> None:
        self.url = url
        self.error = error
        self.raises = raises
        self.on_upload = on_upload
        self.calls: list[str] = []
        self.tokens: list[CancellationToken | None] = []

    def upload(self, path: str, cancel: CancellationToken | None = None) -> UploadOutcome:
        self.calls.append(path)
        self.tokens.append(cancel)
        if self.on_upload is not None:
            self.on_upload()
        if cancel is not None:
            cancel.raise_if_cancelled()
        if self.raises is not None:
            raise self.raises
        if self.url is None:
            return UploadOutcome(url=None, error=self.error)
        return UploadOutcome(url=self.url, expires_at="2026-01-01T01:00:00+00:00")


class FakeAnnotator:
    """Stands in for CreativeAnnotationStage and records its calls."""

    def __init__(self, text: str | None = FAKE_COMMENTARY) -> None:
        self.text = text
        self.calls: list[tuple[FeatureSet, str | None]] = []

    def annotate(self, features: FeatureSet, media_url: str | None) -> str | None:
        self.calls.append((features, media_url))
        return self.text


class FakeProvider:
    """GenerationProvider returning canned text; optional delay or error."""

    def __init__(
        self,
        content: str = FAKE_COMMENTARY,
        *,
        raises: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.content = content
        self.raises = raises
        self.delay = delay
        self.requests: list[GenerationRequest] = []
        self._release = threading.Event()

    def release(self) -> None:
        self._release.set()

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        if self.delay:
            self._release.wait(self.delay)
        if self.raises is not None:
            raise self.raises
        return GenerationResponse(
            content=self.content,
            model="fake-model",
            usage_input_tokens=10,
            usage_output_tokens=20,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def audio_file(tmp_path: Path) -> Path:
    """An existing absolute .wav path. Content is irrelevant to FakeBackend."""
    path = tmp_path / "track.wav"
    path.write_bytes(b"RIFF\x24\x00\x00\x00WAVEfmt " + b"\x00" * 32)
    return path


@pytest.fixture()
def events() -> list[ProgressEvent]:
    """A list usable directly as a progress sink (``events.append``)."""
    return []


@pytest.fixture()
def sample_features() -> FeatureSet:
    from core.audio.types import ChordEvent

    return FeatureSet(
        duration_seconds=185.4,
        sample_rate=44100,
        bpm=128.0,
        beats_count=395,
        rhythm_confidence=3.1,
        onset_rate=4.2,
        key="A",
        scale="minor",
        key_strength=0.82,
        energy=152340.0,
        loudness=3120.5,
        rms=0.21,
        dynamic_complexity=4.5,
        spectral_centroid=2210.0,
        spectral_rolloff=5120.0,
        spectral_flatness=0.04,
        zero_crossing_rate=0.061,
        danceability=0.74,
        mfcc=tuple(float(i) for i in range(13)),
        mel_bands=tuple(1.0 for _ in range(24)),
        spectral_contrast=tuple(1.0 for _ in range(7)),
        hpcp=tuple(1.0 / 12 for _ in range(12)),
        chords=(
            ChordEvent("Am", 0.8, 0.0),
            ChordEvent("F", 0.7, 2.1),
            ChordEvent("C", 0.75, 4.2),
            ChordEvent("G", 0.6, 6.3),
        ),
    )

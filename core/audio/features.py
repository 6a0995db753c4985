"""
core/audio/features.py — Feature aggregation over a decoded signal.

All functions accept (signal: np.ndarray, sample_rate: int) plus an injected
``FeatureExtractionPort``; nothing here reads files or imports librosa, so
the module is testable with a MagicMock backend.

Design:
    - ``extract_features()`` is the high-level aggregator. Each extractor is
      called through ``_guarded()``: a raising (or non-finite) extractor
      leaves only its own field as ``None`` and the set is still returned.
    - BPM has two tiers: the fast Percival estimator first, then the full
      rhythm extractor, which also yields beat count and confidence.
    - Chords run through track_chords() → smooth_chord_progression(); any
      failure in that chain yields an empty progression.
    - ``extract_key()`` is pure numpy — Krumhansl-Schmuckler over a chroma
      vector. Backends use it to implement ``key()``.

Krumhansl-Schmuckler profiles (1990):
    Psychoacoustic salience weights for each of 12 pitch classes
    relative to a tonal centre. Pearson correlation against all 24
    key templates (12 major + 12 minor) selects the best match.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import numpy as np

from core.audio.chord_smoothing import smooth_chord_progression
from core.audio.chord_tracking import track_chords
from core.audio.port import FeatureExtractionPort
from core.audio.types import ChordEvent, FeatureSet, Key
from core.config import DEFAULT_CONFIG, AnalysisConfig
from core.pipeline.cancellation import AnalysisCancelled

if TYPE_CHECKING:
    from core.pipeline.cancellation import CancellationToken

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Krumhansl-Schmuckler profiles (1990)
# Starting from C — 12-element salience weights
# ---------------------------------------------------------------------------

_MAJOR_PROFILE: tuple[float, ...] = (
    6.35,
    2.23,
    3.48,
    2.33,
    4.38,
    4.09,
    2.52,
    5.19,
    2.39,
    3.66,
    2.29,
    2.88,
)
_MINOR_PROFILE: tuple[float, ...] = (
    6.33,
    2.68,
    3.52,
    5.38,
    2.60,
    3.53,
    2.54,
    4.75,
    3.98,
    2.69,
    3.34,
    3.17,
)

# Chromatic note names (sharps notation)
_NOTE_NAMES: tuple[str, ...] = (
    "C",
    "C#",
    "D",
    "D#",
    "E",
    "F",
    "F#",
    "G",
    "G#",
    "A",
    "A#",
    "B",
)

# Preferred flat spellings for minor keys
_ENHARMONIC_MINOR: dict[str, str] = {
    "A#": "Bb",
    "D#": "Eb",
    "G#": "Ab",
}


# ---------------------------------------------------------------------------
# Key detection (pure numpy)
# ---------------------------------------------------------------------------


def extract_key(chroma_mean: np.ndarray) -> Key:
    """Detect musical key using Krumhansl-Schmuckler profiles.

    Pearson-correlates the 12-element chroma distribution (C-referenced)
    against all 24 key templates. The best correlation wins.

    Args:
        chroma_mean: np.ndarray of shape (12,) — pitch class distribution.

    Returns:
        Key with root, mode, and confidence (best Pearson r).
        Confidence 0.0 is returned for flat/silent chroma input.

    Raises:
        ValueError: If chroma_mean is not shape (12,).
    """
    if chroma_mean.shape != (12,):
        raise ValueError(f"chroma_mean must have shape (12,), got {chroma_mean.shape}")

    best_score: float = -2.0  # Pearson r ∈ [-1, 1]
    best_root: str = "C"
    best_mode: str = "major"

    major_arr = np.array(_MAJOR_PROFILE)
    minor_arr = np.array(_MINOR_PROFILE)

    for root_idx in range(12):
        major_profile = np.roll(major_arr, root_idx)
        minor_profile = np.roll(minor_arr, root_idx)

        # errstate suppresses RuntimeWarning when chroma has zero variance
        with np.errstate(invalid="ignore", divide="ignore"):
            major_r = float(np.nan_to_num(np.corrcoef(chroma_mean, major_profile)[0, 1]))
            minor_r = float(np.nan_to_num(np.corrcoef(chroma_mean, minor_profile)[0, 1]))

        if major_r > best_score:
            best_score = major_r
            best_root = _NOTE_NAMES[root_idx]
            best_mode = "major"

        if minor_r > best_score:
            best_score = minor_r
            best_root = _ENHARMONIC_MINOR.get(_NOTE_NAMES[root_idx], _NOTE_NAMES[root_idx])
            best_mode = "minor"

    confidence = max(0.0, min(1.0, best_score))
    return Key(root=best_root, mode=best_mode, confidence=confidence)


# ---------------------------------------------------------------------------
# Guarded extractor calls
# ---------------------------------------------------------------------------


def _guarded(name: str, fn: Callable[..., Any], *args: Any) -> Any:
    """Call one extractor; log and return None on failure or non-finite output."""
    try:
        value = fn(*args)
    except AnalysisCancelled:
        raise
    except Exception as exc:
        logger.warning("Extractor %s failed: %s", name, exc)
        return None
    if isinstance(value, (float, int, np.floating, np.integer)) and not math.isfinite(value):
        logger.warning("Extractor %s returned non-finite value %r", name, value)
        return None
    return value


def _as_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _as_vector(value: Any) -> tuple[float, ...] | None:
    if value is None:
        return None
    arr = np.asarray(value, dtype=np.float64).ravel()
    if not np.all(np.isfinite(arr)):
        return None
    return tuple(float(v) for v in arr)


# ---------------------------------------------------------------------------
# BPM: fast tier, then full rhythm extraction
# ---------------------------------------------------------------------------


def detect_bpm(
    signal: np.ndarray,
    sample_rate: int,
    *,
    backend: FeatureExtractionPort,
) -> tuple[float | None, int | None, float | None]:
    """Estimate tempo with a fast estimator, falling back to full rhythm extraction.

    Returns:
        (bpm, beats_count, confidence). Beat count and confidence are only
        known when the fallback tier ran; all three are None when both
        tiers fail.
    """
    try:
        bpm = float(backend.percival_bpm(signal, sample_rate))
        if not math.isfinite(bpm) or bpm <= 0:
            raise ValueError(f"implausible bpm {bpm!r}")
        return bpm, None, None
    except AnalysisCancelled:
        raise
    except Exception as exc:
        logger.info("Fast BPM estimator failed (%s) — trying rhythm extractor", exc)

    try:
        rhythm = backend.rhythm_extractor(signal, sample_rate)
    except AnalysisCancelled:
        raise
    except Exception as exc:
        logger.warning("BPM detection failed: %s", exc)
        return None, None, None
    return float(rhythm.bpm), int(rhythm.beats_count), float(rhythm.confidence)


# ---------------------------------------------------------------------------
# Harmonic features
# ---------------------------------------------------------------------------


def extract_mean_hpcp(
    signal: np.ndarray,
    sample_rate: int,
    *,
    backend: FeatureExtractionPort,
    config: AnalysisConfig = DEFAULT_CONFIG,
) -> np.ndarray:
    """Average HPCP over non-overlapping frames — the file's overall pitch class profile.

    Frames whose chain fails are left out of the average.

    Raises:
        ValueError: If no frame produced a profile.
    """
    frame_size = config.chord_frame_size
    profiles: list[np.ndarray] = []
    for frame in backend.frame_generator(signal, frame_size, frame_size):
        try:
            spectrum = backend.spectrum(backend.windowing(frame))
            frequencies, magnitudes = backend.spectral_peaks(
                spectrum,
                sample_rate,
                max_peaks=config.max_peaks,
                threshold=config.peak_threshold,
                min_frequency=config.min_frequency,
                max_frequency=config.max_frequency,
            )
            profiles.append(
                np.asarray(
                    backend.hpcp(
                        frequencies,
                        magnitudes,
                        reference_frequency=config.reference_frequency,
                        harmonics=config.hpcp_harmonics,
                        min_frequency=config.min_frequency,
                        max_frequency=config.max_frequency,
                        split_frequency=config.split_frequency,
                        band_preset=config.hpcp_band_preset,
                        sample_rate=sample_rate,
                    ),
                    dtype=np.float64,
                )
            )
        except Exception as exc:
            logger.debug("HPCP frame skipped: %s", exc)
    if not profiles:
        raise ValueError("no frame produced an HPCP")
    return np.mean(np.vstack(profiles), axis=0)


def detect_chords(
    signal: np.ndarray,
    sample_rate: int,
    *,
    backend: FeatureExtractionPort,
    config: AnalysisConfig = DEFAULT_CONFIG,
    cancel: CancellationToken | None = None,
) -> tuple[ChordEvent, ...]:
    """Raw frame tracking followed by run-length smoothing.

    Returns:
        The denoised progression. Empty if anything in the chain fails.
    """
    try:
        raw = track_chords(signal, sample_rate, backend=backend, config=config, cancel=cancel)
        chords = tuple(smooth_chord_progression(raw, min_run=config.min_chord_run))
    except AnalysisCancelled:
        raise
    except Exception as exc:
        logger.warning("Chord detection failed: %s", exc)
        return ()
    logger.info("Detected %d chord changes", len(chords))
    return chords


# ---------------------------------------------------------------------------
# Full aggregation
# ---------------------------------------------------------------------------


def extract_features(
    signal: np.ndarray,
    sample_rate: int,
    *,
    backend: FeatureExtractionPort,
    config: AnalysisConfig = DEFAULT_CONFIG,
    cancel: CancellationToken | None = None,
) -> FeatureSet:
    """Run every extractor and assemble a FeatureSet.

    Pipeline:
        1. duration / sample rate (local, always present)
        2. BPM (fast tier → rhythm tier), onset rate
        3. key + scale + strength
        4. energy, loudness, RMS, dynamic complexity
        5. spectral centroid / rolloff / flatness, zero-crossing rate
        6. MFCC, mel bands, spectral contrast, mean HPCP
        7. chord progression (tracking → smoothing)
        8. danceability

    Args:
        signal: Mono audio samples.
        sample_rate: Sample rate in Hz.
        backend: DSP backend satisfying FeatureExtractionPort.
        config: Chord tracking and HPCP parameters.
        cancel: Optional token checked between extractors.

    Returns:
        FeatureSet; any field whose extractor failed is None.

    Raises:
        ValueError: If the signal is empty or sample_rate is not positive.
        AnalysisCancelled: If ``cancel`` is set mid-run.
    """
    if sample_rate <= 0:
        raise ValueError(f"sample_rate must be positive, got {sample_rate}")
    if signal.size == 0:
        raise ValueError("signal is empty")

    def checkpoint() -> None:
        if cancel is not None:
            cancel.raise_if_cancelled()

    duration_seconds = float(signal.size) / float(sample_rate)

    checkpoint()
    bpm, beats_count, rhythm_confidence = detect_bpm(signal, sample_rate, backend=backend)
    onset_rate = _guarded("onset_rate", backend.onset_rate, signal, sample_rate)

    checkpoint()
    key = _guarded("key", backend.key, signal, sample_rate)

    checkpoint()
    energy = _guarded("energy", backend.energy, signal)
    loudness = _guarded("loudness", backend.loudness, signal)
    rms = _guarded("rms", backend.rms, signal)
    dynamic_complexity = _guarded(
        "dynamic_complexity", backend.dynamic_complexity, signal, sample_rate
    )

    checkpoint()
    centroid = _guarded("spectral_centroid", backend.spectral_centroid, signal, sample_rate)
    rolloff = _guarded("spectral_rolloff", backend.spectral_rolloff, signal, sample_rate)
    flatness = _guarded("spectral_flatness", backend.spectral_flatness, signal)
    zcr = _guarded("zero_crossing_rate", backend.zero_crossing_rate, signal)

    checkpoint()
    mfcc = _guarded("mfcc", backend.mfcc, signal, sample_rate)
    mel_bands = _guarded("mel_bands", backend.mel_bands, signal, sample_rate)
    contrast = _guarded("spectral_contrast", backend.spectral_contrast, signal, sample_rate)
    hpcp = _guarded(
        "hpcp",
        lambda s, sr: extract_mean_hpcp(s, sr, backend=backend, config=config),
        signal,
        sample_rate,
    )

    checkpoint()
    chords = detect_chords(signal, sample_rate, backend=backend, config=config, cancel=cancel)

    checkpoint()
    danceability = _guarded("danceability", backend.danceability, signal, sample_rate)

    return FeatureSet(
        duration_seconds=duration_seconds,
        sample_rate=int(sample_rate),
        bpm=bpm,
        beats_count=beats_count,
        rhythm_confidence=rhythm_confidence,
        onset_rate=_as_float(onset_rate),
        key=key.root if key is not None else None,
        scale=key.mode if key is not None else None,
        key_strength=float(key.confidence) if key is not None else None,
        energy=_as_float(energy),
        loudness=_as_float(loudness),
        rms=_as_float(rms),
        dynamic_complexity=_as_float(dynamic_complexity),
        spectral_centroid=_as_float(centroid),
        spectral_rolloff=_as_float(rolloff),
        spectral_flatness=_as_float(flatness),
        zero_crossing_rate=_as_float(zcr),
        danceability=_as_float(danceability),
        mfcc=_as_vector(mfcc),
        mel_bands=_as_vector(mel_bands),
        spectral_contrast=_as_vector(contrast),
        hpcp=_as_vector(hpcp),
        chords=chords,
    )

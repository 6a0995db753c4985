"""
ingestion/feature_backend.py — Essentia + librosa FeatureExtractionPort.

EssentiaFeatureBackend satisfies ``core.audio.port.FeatureExtractionPort``.

    essentia.standard — the harmonic frame chain (Windowing, Spectrum,
                        SpectralPeaks, SpectralWhitening, HPCP,
                        ChordsDetection), PercivalBpmEstimator,
                        RhythmExtractor2013, OnsetRate, Energy, Loudness,
                        RMS, DynamicComplexity, Danceability
    librosa           — decoding, CQT chroma for key detection, spectral
                        statistics, MFCC, mel bands, spectral contrast

Both libraries are imported lazily on first use (or injected for testing),
so constructing the backend is cheap and tests never need the audio stack.

Essentia algorithms keep internal buffers and are not safe to share between
threads. Configured instances are cached per thread; the backend itself
holds no per-run state. A single process-wide instance is available from
``get_feature_backend()``, created once under a lock.

Usage:
    backend = get_feature_backend()
    signal, sr = backend.decode("/path/to/track.wav")
    bpm = backend.percival_bpm(signal, sr)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from typing import Any

import numpy as np

from core.audio.features import extract_key
from core.audio.port import NO_CHORD
from core.audio.types import Key, RhythmEstimate
from ingestion.audio_loader import load_audio

logger = logging.getLogger(__name__)

# RhythmExtractor2013 and OnsetRate are only defined at 44.1 kHz
ESSENTIA_RATE = 44100

WINDOW_TYPE = "blackmanharris62"

_N_MFCC = 13
_N_MEL_BANDS = 24
_ROLLOFF_PERCENT = 0.85

# Essentia's Danceability score lies in [0, ~3]; reported as a fraction
_DANCEABILITY_SCALE = 3.0


def _f32(values: Any) -> np.ndarray:
    """Contiguous float32 copy, the only array type essentia accepts."""
    return np.ascontiguousarray(values, dtype=np.float32)


class EssentiaFeatureBackend:
    """DSP backend built on essentia.standard and librosa.

    All methods are deterministic for identical input. Methods raise on
    invalid input; the feature aggregator decides what a failure means.

    Example:
        backend = EssentiaFeatureBackend()
        features = extract_features(signal, sr, backend=backend)
    """

    def __init__(self, essentia: Any = None, librosa: Any = None) -> None:
        """Initialise the backend.

        Args:
            essentia: Injected ``essentia.standard`` module. Pass a MagicMock in
                      tests. None = import lazily on first use.
            librosa:  Injected librosa module. None = import lazily on first use.
        """
        self._essentia = essentia
        self._librosa = librosa
        self._local = threading.local()

    def _get_essentia(self) -> Any:
        """Return essentia.standard, importing it lazily if not already injected."""
        if self._essentia is None:
            import essentia.standard as _es  # deferred: tests run without an audio backend

            self._essentia = _es
        return self._essentia

    def _get_librosa(self) -> Any:
        """Return librosa, importing it lazily if not already injected."""
        if self._librosa is None:
            import librosa as _lib  # deferred: tests run without an audio backend

            self._librosa = _lib
        return self._librosa

    def _algorithm(self, name: str, **params: Any) -> Any:
        """Configured essentia algorithm, cached per thread and parameter set."""
        cache: dict[tuple, Any] | None = getattr(self._local, "algorithms", None)
        if cache is None:
            cache = self._local.algorithms = {}
        key = (name, tuple(sorted(params.items())))
        algorithm = cache.get(key)
        if algorithm is None:
            algorithm = getattr(self._get_essentia(), name)(**params)
            cache[key] = algorithm
        return algorithm

    def _at_essentia_rate(self, signal: np.ndarray, sample_rate: int) -> np.ndarray:
        if sample_rate == ESSENTIA_RATE:
            return _f32(signal)
        librosa = self._get_librosa()
        return _f32(librosa.resample(signal, orig_sr=sample_rate, target_sr=ESSENTIA_RATE))

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, path: str) -> tuple[np.ndarray, int]:
        """Decode to mono float64. Raises DecodeError."""
        return load_audio(path)

    # ------------------------------------------------------------------
    # Frame-level primitives
    # ------------------------------------------------------------------

    def frame_generator(
        self, signal: np.ndarray, frame_size: int, hop_size: int
    ) -> Iterator[np.ndarray]:
        """Yield full frames starting at ``i * hop_size``.

        A trailing partial frame is dropped. A non-empty signal shorter than
        one frame yields a single zero-padded frame.
        """
        if frame_size <= 0 or hop_size <= 0:
            raise ValueError(
                f"frame_size and hop_size must be positive, got {frame_size}, {hop_size}"
            )
        n = signal.size
        if n == 0:
            return
        if n < frame_size:
            yield np.pad(signal, (0, frame_size - n))
            return
        for start in range(0, n - frame_size + 1, hop_size):
            yield signal[start : start + frame_size]

    def windowing(self, frame: np.ndarray) -> np.ndarray:
        window = self._algorithm("Windowing", type=WINDOW_TYPE, normalized=True)
        return np.asarray(window(_f32(frame)))

    def spectrum(self, frame: np.ndarray) -> np.ndarray:
        frame = _f32(frame)
        return np.asarray(self._algorithm("Spectrum", size=int(frame.size))(frame))

    def spectral_peaks(
        self,
        spectrum: np.ndarray,
        sample_rate: int,
        *,
        max_peaks: int,
        threshold: float,
        min_frequency: float,
        max_frequency: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        peaks = self._algorithm(
            "SpectralPeaks",
            sampleRate=float(sample_rate),
            maxPeaks=int(max_peaks),
            magnitudeThreshold=float(threshold),
            minFrequency=float(min_frequency),
            maxFrequency=float(max_frequency),
            orderBy="magnitude",
        )
        frequencies, magnitudes = peaks(_f32(spectrum))
        return np.asarray(frequencies), np.asarray(magnitudes)

    def spectral_whitening(
        self,
        spectrum: np.ndarray,
        frequencies: np.ndarray,
        magnitudes: np.ndarray,
        sample_rate: int,
        *,
        max_frequency: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        whitening = self._algorithm(
            "SpectralWhitening", sampleRate=float(sample_rate), maxFrequency=float(max_frequency)
        )
        frequencies = _f32(frequencies)
        whitened = whitening(_f32(spectrum), frequencies, _f32(magnitudes))
        return np.asarray(frequencies), np.asarray(whitened)

    def hpcp(
        self,
        frequencies: np.ndarray,
        magnitudes: np.ndarray,
        *,
        reference_frequency: float,
        harmonics: int,
        min_frequency: float,
        max_frequency: float,
        split_frequency: float,
        band_preset: bool,
        sample_rate: int,
    ) -> np.ndarray:
        hpcp = self._algorithm(
            "HPCP",
            size=12,
            referenceFrequency=float(reference_frequency),
            harmonics=int(harmonics),
            bandPreset=bool(band_preset),
            minFrequency=float(min_frequency),
            maxFrequency=float(max_frequency),
            splitFrequency=float(split_frequency),
            sampleRate=float(sample_rate),
            weightType="cosine",
            nonLinear=False,
        )
        return np.asarray(hpcp(_f32(frequencies), _f32(magnitudes)), dtype=np.float64)

    def chords_detection(self, hpcp: np.ndarray) -> tuple[str, float]:
        """Classify one HPCP frame. Silent or unmatched frames are ``NO_CHORD``."""
        profile = _f32(hpcp)
        if profile.shape != (12,):
            raise ValueError(f"expected a 12-bin HPCP, got shape {profile.shape}")
        if not np.any(profile > 0):
            return NO_CHORD, 0.0
        chords, strengths = self._algorithm("ChordsDetection")(profile[None, :])
        if len(chords) == 0:
            return NO_CHORD, 0.0
        strength = float(strengths[0])
        if not np.isfinite(strength) or strength <= 0:
            return NO_CHORD, 0.0
        return str(chords[0]), min(1.0, strength)

    # ------------------------------------------------------------------
    # Rhythm
    # ------------------------------------------------------------------

    def percival_bpm(self, signal: np.ndarray, sample_rate: int) -> float:
        """Fast tempo estimate (Percival & Tzanetakis 2014).

        Raises:
            ValueError: The estimator returned no usable tempo.
        """
        estimator = self._algorithm("PercivalBpmEstimator", sampleRate=int(sample_rate))
        bpm = float(estimator(_f32(signal)))
        if not np.isfinite(bpm) or bpm <= 0:
            raise ValueError(f"Percival estimator returned no tempo ({bpm!r})")
        return bpm

    def rhythm_extractor(self, signal: np.ndarray, sample_rate: int) -> RhythmEstimate:
        """Full beat tracking: tempo, beat count and confidence in [0, 5.32]."""
        extractor = self._algorithm("RhythmExtractor2013", method="multifeature")
        bpm, ticks, confidence, _estimates, _intervals = extractor(
            self._at_essentia_rate(signal, sample_rate)
        )
        bpm = float(bpm)
        if not np.isfinite(bpm) or bpm <= 0:
            raise ValueError(f"rhythm extractor returned no tempo ({bpm!r})")
        return RhythmEstimate(bpm=bpm, beats_count=len(ticks), confidence=float(confidence))

    def onset_rate(self, signal: np.ndarray, sample_rate: int) -> float:
        """Detected onsets per second."""
        _onsets, rate = self._algorithm("OnsetRate")(self._at_essentia_rate(signal, sample_rate))
        return float(rate)

    # ------------------------------------------------------------------
    # Tonal
    # ------------------------------------------------------------------

    def key(self, signal: np.ndarray, sample_rate: int) -> Key:
        librosa = self._get_librosa()
        chroma = librosa.feature.chroma_cqt(y=signal, sr=sample_rate)
        return extract_key(np.mean(np.asarray(chroma), axis=1))

    # ------------------------------------------------------------------
    # Energy and dynamics
    # ------------------------------------------------------------------

    def energy(self, signal: np.ndarray) -> float:
        return float(self._algorithm("Energy")(_f32(signal)))

    def loudness(self, signal: np.ndarray) -> float:
        """Steven's power law: energy ** 0.67."""
        return float(self._algorithm("Loudness")(_f32(signal)))

    def rms(self, signal: np.ndarray) -> float:
        return float(self._algorithm("RMS")(_f32(signal)))

    def dynamic_complexity(self, signal: np.ndarray, sample_rate: int) -> float:
        """Mean absolute deviation (dB) from the global loudness level."""
        complexity, _loudness = self._algorithm(
            "DynamicComplexity", sampleRate=float(sample_rate)
        )(_f32(signal))
        return float(complexity)

    # ------------------------------------------------------------------
    # Spectral statistics
    # ------------------------------------------------------------------

    def spectral_centroid(self, signal: np.ndarray, sample_rate: int) -> float:
        librosa = self._get_librosa()
        return float(np.mean(librosa.feature.spectral_centroid(y=signal, sr=sample_rate)))

    def spectral_rolloff(self, signal: np.ndarray, sample_rate: int) -> float:
        librosa = self._get_librosa()
        return float(
            np.mean(
                librosa.feature.spectral_rolloff(
                    y=signal, sr=sample_rate, roll_percent=_ROLLOFF_PERCENT
                )
            )
        )

    def spectral_flatness(self, signal: np.ndarray) -> float:
        librosa = self._get_librosa()
        return float(np.mean(librosa.feature.spectral_flatness(y=signal)))

    def zero_crossing_rate(self, signal: np.ndarray) -> float:
        librosa = self._get_librosa()
        return float(np.mean(librosa.feature.zero_crossing_rate(y=signal)))

    def danceability(self, signal: np.ndarray, sample_rate: int) -> float:
        """Essentia's DFA danceability mapped onto [0, 1]."""
        score, _dfa = self._algorithm("Danceability", sampleRate=float(sample_rate))(
            _f32(signal)
        )
        return max(0.0, min(1.0, float(score) / _DANCEABILITY_SCALE))

    # ------------------------------------------------------------------
    # Vectors (time-averaged)
    # ------------------------------------------------------------------

    def mfcc(self, signal: np.ndarray, sample_rate: int) -> np.ndarray:
        librosa = self._get_librosa()
        coeffs = librosa.feature.mfcc(y=signal, sr=sample_rate, n_mfcc=_N_MFCC)
        return np.mean(np.asarray(coeffs), axis=1)

    def mel_bands(self, signal: np.ndarray, sample_rate: int) -> np.ndarray:
        librosa = self._get_librosa()
        mel = librosa.feature.melspectrogram(y=signal, sr=sample_rate, n_mels=_N_MEL_BANDS)
        return np.mean(np.asarray(mel), axis=1)

    def spectral_contrast(self, signal: np.ndarray, sample_rate: int) -> np.ndarray:
        librosa = self._get_librosa()
        contrast = librosa.feature.spectral_contrast(y=signal, sr=sample_rate)
        return np.mean(np.asarray(contrast), axis=1)


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_backend: EssentiaFeatureBackend | None = None
_backend_lock = threading.Lock()


def get_feature_backend() -> EssentiaFeatureBackend:
    """Return the process-wide backend, constructing it exactly once.

    Double-checked under a lock: concurrent first callers all receive the
    same instance.
    """
    global _backend  # noqa: PLW0603
    if _backend is None:
        with _backend_lock:
            if _backend is None:
                logger.info("Initializing essentia feature backend")
                backend = EssentiaFeatureBackend()
                backend._get_essentia()
                backend._get_librosa()
                _backend = backend
    return _backend


def reset_feature_backend() -> None:
    """Drop the cached backend so the next call rebuilds it (tests, reloads)."""
    global _backend  # noqa: PLW0603
    with _backend_lock:
        _backend = None

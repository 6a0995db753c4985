"""
Feature extraction port — the contract the pipeline requires of a DSP backend.

This module is pure — no I/O, no DSP. Concrete backends live in
``ingestion/`` (see ``ingestion/feature_backend.py``).

Structural typing, same as ``GenerationProvider``: any object with these
methods satisfies the port without inheriting from it. Every method may
raise; callers decide whether a failure is fatal (decode) or local
(everything else).
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol, runtime_checkable

import numpy as np

from core.audio.types import Key, RhythmEstimate

NO_CHORD = "N"
"""Sentinel label returned by ``chords_detection`` when a frame has no chord."""


@runtime_checkable
class FeatureExtractionPort(Protocol):
    """Capabilities the technical analysis stage calls into."""

    # -- decoding ---------------------------------------------------------

    def decode(self, path: str) -> tuple[np.ndarray, int]:
        """Decode a file to a mono float64 signal and its sample rate."""
        ...

    # -- frame-level primitives ------------------------------------------

    def frame_generator(
        self, signal: np.ndarray, frame_size: int, hop_size: int
    ) -> Iterator[np.ndarray]:
        """Yield frames of ``frame_size`` samples starting at ``i * hop_size``."""
        ...

    def windowing(self, frame: np.ndarray) -> np.ndarray:
        """Apply the analysis window to one frame."""
        ...

    def spectrum(self, frame: np.ndarray) -> np.ndarray:
        """Magnitude spectrum of a windowed frame."""
        ...

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
        """Return (frequencies, magnitudes) ordered by descending magnitude."""
        ...

    def spectral_whitening(
        self,
        spectrum: np.ndarray,
        frequencies: np.ndarray,
        magnitudes: np.ndarray,
        sample_rate: int,
        *,
        max_frequency: float,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return (frequencies, whitened magnitudes)."""
        ...

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
        """12-bin harmonic pitch class profile (bin 0 = reference pitch class)."""
        ...

    def chords_detection(self, hpcp: np.ndarray) -> tuple[str, float]:
        """Classify an HPCP into (label, strength); ``NO_CHORD`` when empty."""
        ...

    # -- scalar extractors -----------------------------------------------

    def percival_bpm(self, signal: np.ndarray, sample_rate: int) -> float: ...

    def rhythm_extractor(self, signal: np.ndarray, sample_rate: int) -> RhythmEstimate: ...

    def onset_rate(self, signal: np.ndarray, sample_rate: int) -> float: ...

    def key(self, signal: np.ndarray, sample_rate: int) -> Key: ...

    def energy(self, signal: np.ndarray) -> float: ...

    def loudness(self, signal: np.ndarray) -> float: ...

    def rms(self, signal: np.ndarray) -> float: ...

    def dynamic_complexity(self, signal: np.ndarray, sample_rate: int) -> float: ...

    def spectral_centroid(self, signal: np.ndarray, sample_rate: int) -> float: ...

    def spectral_rolloff(self, signal: np.ndarray, sample_rate: int) -> float: ...

    def spectral_flatness(self, signal: np.ndarray) -> float: ...

    def zero_crossing_rate(self, signal: np.ndarray) -> float: ...

    def danceability(self, signal: np.ndarray, sample_rate: int) -> float: ...

    # -- vector extractors -----------------------------------------------

    def mfcc(self, signal: np.ndarray, sample_rate: int) -> np.ndarray: ...

    def mel_bands(self, signal: np.ndarray, sample_rate: int) -> np.ndarray: ...

    def spectral_contrast(self, signal: np.ndarray, sample_rate: int) -> np.ndarray: ...

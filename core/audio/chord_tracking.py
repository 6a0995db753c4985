"""
core/audio/chord_tracking.py — Frame-by-frame chord classification.

Walks a decoded signal in overlapping frames and runs the harmonic chain
on each one:

    frame → window → spectrum → peaks → whitening → HPCP → chord

The backend is injected (any ``FeatureExtractionPort``), so this module
has no DSP or I/O of its own. A frame that fails anywhere in the chain is
logged and skipped; one bad frame never aborts the scan. Frames classified
as "no chord" are dropped here and never reach the smoother.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

import numpy as np

from core.audio.port import NO_CHORD, FeatureExtractionPort
from core.audio.types import ChordEvent
from core.config import DEFAULT_CONFIG, AnalysisConfig

if TYPE_CHECKING:
    from core.pipeline.cancellation import CancellationToken

logger = logging.getLogger(__name__)


def track_chords(
    signal: np.ndarray,
    sample_rate: int,
    *,
    backend: FeatureExtractionPort,
    config: AnalysisConfig = DEFAULT_CONFIG,
    cancel: CancellationToken | None = None,
) -> Iterator[ChordEvent]:
    """Yield one raw chord event per classifiable frame.

    Frame ``i`` starts at sample ``i * hop`` and is stamped at
    ``i * hop / sample_rate`` seconds. The generator is lazy and can be
    restarted by calling the function again.

    Args:
        signal: Mono audio samples.
        sample_rate: Sample rate in Hz.
        backend: DSP backend providing the frame-level primitives.
        config: Frame size, hop size, peak and HPCP parameters.
        cancel: Optional token checked before every frame.

    Yields:
        ChordEvent with the classifier's label and strength (clipped to [0, 1]).

    Raises:
        AnalysisCancelled: If ``cancel`` is set during the scan.
    """
    hop = config.chord_hop_size
    time_step = hop / float(sample_rate)
    skipped = 0
    scanned = 0

    for index, frame in enumerate(
        backend.frame_generator(signal, config.chord_frame_size, hop)
    ):
        if cancel is not None:
            cancel.raise_if_cancelled()
        scanned += 1

        try:
            windowed = backend.windowing(frame)
            spectrum = backend.spectrum(windowed)
            frequencies, magnitudes = backend.spectral_peaks(
                spectrum,
                sample_rate,
                max_peaks=config.max_peaks,
                threshold=config.peak_threshold,
                min_frequency=config.min_frequency,
                max_frequency=config.max_frequency,
            )
            frequencies, magnitudes = backend.spectral_whitening(
                spectrum,
                frequencies,
                magnitudes,
                sample_rate,
                max_frequency=config.max_frequency,
            )
            profile = backend.hpcp(
                frequencies,
                magnitudes,
                reference_frequency=config.reference_frequency,
                harmonics=config.hpcp_harmonics,
                min_frequency=config.min_frequency,
                max_frequency=config.max_frequency,
                split_frequency=config.split_frequency,
                band_preset=config.hpcp_band_preset,
                sample_rate=sample_rate,
            )
            label, strength = backend.chords_detection(profile)
        except Exception as exc:
            skipped += 1
            logger.debug("Chord frame %d skipped: %s", index, exc)
            continue

        if not label or label == NO_CHORD:
            continue

        yield ChordEvent(
            label=label,
            confidence=max(0.0, min(1.0, float(strength or 0.0))),
            timestamp_seconds=index * time_step,
        )

    if skipped:
        logger.warning("Chord tracking skipped %d of %d frames", skipped, scanned)

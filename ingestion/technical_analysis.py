"""
ingestion/technical_analysis.py — Decode + feature extraction stage.

TechnicalAnalysisStage is the mandatory branch of the pipeline:

    AudioSource
        │
        ├─ backend.decode()        [ingestion/audio_loader.py — I/O boundary]
        │       ↓
        └─ extract_features()      [core/audio/features.py — pure aggregation]
                ├─ scalar / vector extractors (each guarded)
                └─ track_chords() → smooth_chord_progression()

Only a decode failure escapes (as DecodeError). Every extractor failure is
absorbed inside extract_features() and leaves one field as None.
"""

from __future__ import annotations

import logging
import time

from core.audio.features import extract_features
from core.audio.port import FeatureExtractionPort
from core.audio.types import AudioSource, FeatureSet
from core.config import DEFAULT_CONFIG, AnalysisConfig
from core.pipeline.cancellation import CancellationToken
from ingestion.audio_loader import DecodeError

logger = logging.getLogger(__name__)


class TechnicalAnalysisStage:
    """Produce a FeatureSet for one audio file.

    Args:
        backend: DSP backend. Typically ``get_feature_backend()``.
        config: Chord tracking and HPCP parameters.
    """

    def __init__(
        self,
        backend: FeatureExtractionPort,
        config: AnalysisConfig = DEFAULT_CONFIG,
    ) -> None:
        self._backend = backend
        self._config = config

    def run(
        self,
        source: AudioSource,
        cancel: CancellationToken | None = None,
    ) -> FeatureSet:
        """Decode ``source`` and extract its features.

        Raises:
            DecodeError: The file cannot be decoded to a mono signal.
            AnalysisCancelled: ``cancel`` was set before or during extraction.
        """
        if cancel is not None:
            cancel.raise_if_cancelled()

        start = time.perf_counter()
        try:
            signal, sample_rate = self._backend.decode(source.path)
        except DecodeError:
            raise
        except Exception as exc:
            raise DecodeError(f"Failed to decode {source.file_name!r}: {exc}") from exc

        if sample_rate <= 0 or signal.size == 0:
            raise DecodeError(f"{source.file_name!r} decoded to an empty signal")

        logger.info(
            "Decoded %s: %.1fs at %d Hz",
            source.file_name,
            signal.size / float(sample_rate),
            sample_rate,
        )

        features = extract_features(
            signal,
            sample_rate,
            backend=self._backend,
            config=self._config,
            cancel=cancel,
        )
        logger.info(
            "Technical analysis of %s finished in %.0f ms (bpm=%s, key=%s %s, %d chords)",
            source.file_name,
            (time.perf_counter() - start) * 1000,
            f"{features.bpm:.1f}" if features.bpm is not None else "n/a",
            features.key or "n/a",
            features.scale or "",
            len(features.chords),
        )
        return features

"""
core/audio — Pure audio analysis module.

Provides frame-level chord tracking, chord smoothing and
feature aggregation. All functions take (signal: np.ndarray, sample_rate: int)
and return structured data. No file I/O — that lives in ingestion/audio_loader.py.

Architecture note:
    numpy is the only library used here. essentia and librosa are never
    imported in core: the backend that wraps them lives in
    ingestion/feature_backend.py and is injected through FeatureExtractionPort,
    so tests can substitute a mock without the full audio stack.

Public API:
    Types:      AudioSource, ChordEvent, Key, RhythmEstimate, FeatureSet
    Port:       FeatureExtractionPort, NO_CHORD
    Chords:     track_chords, smooth_chord_progression
    Features:   extract_features, extract_key
"""

from core.audio.types import AudioSource, ChordEvent, FeatureSet, Key, RhythmEstimate

__all__ = [
    "AudioSource",
    "ChordEvent",
    "FeatureSet",
    "Key",
    "RhythmEstimate",
]

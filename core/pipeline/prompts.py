"""
core/pipeline/prompts.py — Language-model prompt for creative commentary.

The model receives a listenable URL plus a compact digest of the technical
features, so its commentary is anchored to measured values (tempo, key,
chord timestamps) instead of guesses.

Pure string formatting — no I/O.
"""

from __future__ import annotations

from core.audio.types import FeatureSet

AUDIO_ANALYSIS_PROMPT = """Listen to this audio and tell me what you hear.

Technical reference from signal analysis:
{technical_data}

After your analysis, also cover:
1. Identify the chord progressions for each section (verse, chorus, etc.) \
using the detected chords as reference points - look for patterns that repeat
2. Describe the different sections with their approximate timestamps
3. Describe the stereo field
4. Describe the production style"""

DEFAULT_MAX_PROMPT_CHORDS = 20


def _fmt(value: float | None, digits: int) -> str:
    return "N/A" if value is None else f"{value:.{digits}f}"


def format_chord_digest(features: FeatureSet, max_chords: int = DEFAULT_MAX_PROMPT_CHORDS) -> str:
    """'C (0.0s), Am (2.1s) ... and N more' — empty string when there are no chords."""
    if not features.chords:
        return ""
    shown = ", ".join(
        f"{c.label} ({c.timestamp_seconds:.1f}s)" for c in features.chords[:max_chords]
    )
    hidden = len(features.chords) - max_chords
    if hidden > 0:
        shown += f" ... and {hidden} more"
    return shown


def build_technical_digest(
    features: FeatureSet,
    max_chords: int = DEFAULT_MAX_PROMPT_CHORDS,
) -> str:
    """Human-readable summary of the features the model should see.

    Missing values print as ``N/A`` so the model never sees a fabricated zero.
    """
    key = " ".join(part for part in (features.key, features.scale) if part) or "N/A"
    danceability = (
        "N/A" if features.danceability is None else f"{features.danceability * 100:.1f}%"
    )
    lines = [
        f"Duration: {features.duration_seconds:.1f} seconds",
        f"BPM: {_fmt(features.bpm, 1)}",
        f"Key: {key}",
        f"Energy: {_fmt(features.energy, 2)}",
        f"Loudness: {_fmt(features.loudness, 2)}",
        f"Spectral Centroid: {_fmt(features.spectral_centroid, 2)}",
        f"Danceability: {danceability}",
    ]
    chords = format_chord_digest(features, max_chords)
    if chords:
        lines.append(f"Detected Chords: {chords}")
    return "\n".join(lines)


def build_audio_analysis_prompt(
    features: FeatureSet,
    media_url: str,
    max_chords: int = DEFAULT_MAX_PROMPT_CHORDS,
) -> str:
    """Full user message: media reference first, then the templated prompt.

    Example:
        >>> prompt = build_audio_analysis_prompt(features, "https://host/a.wav")
        >>> prompt.splitlines()[0]
        'Audio: https://host/a.wav'
    """
    body = AUDIO_ANALYSIS_PROMPT.format(
        technical_data=build_technical_digest(features, max_chords)
    )
    return f"Audio: {media_url}\n\n{body}"

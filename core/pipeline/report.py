"""
core/pipeline/report.py — Result compilation and human-readable reports.

Turns a FeatureSet plus optional commentary into the terminal
AnalysisResult. Also renders the sectioned feature report the CLI prints.

Pure — no I/O, no logging.
"""

from __future__ import annotations

from core.audio.types import FeatureSet
from core.pipeline.types import AnalysisResult, AnalysisStatus

SUCCESS_FINAL_MESSAGE = "🎉 Audio analysis complete!"
FAILURE_FINAL_MESSAGE = "❌ Audio analysis failed"
CREATIVE_UNAVAILABLE = "*Creative analysis unavailable - using technical data only.*"

_HIGH_ENERGY = 100000.0
_MEDIUM_ENERGY = 50000.0


def energy_label(energy: float | None) -> str:
    """'High' above 100000, 'Medium' above 50000, otherwise 'Low'."""
    if energy is None:
        return "N/A"
    if energy > _HIGH_ENERGY:
        return "High"
    if energy > _MEDIUM_ENERGY:
        return "Medium"
    return "Low"


def _fmt(value: float | None, digits: int, suffix: str = "") -> str:
    return "N/A" if value is None else f"{value:.{digits}f}{suffix}"


def _key_text(features: FeatureSet) -> str:
    return " ".join(part for part in (features.key, features.scale) if part) or "N/A"


def _percent(value: float | None, digits: int) -> str:
    return "N/A" if value is None else f"{value * 100:.{digits}f}%"


def format_technical_summary(features: FeatureSet) -> str:
    """Stage-complete message for technical analysis."""
    return (
        "✅ Technical Analysis Complete:\n"
        f"• BPM: {_fmt(features.bpm, 1)}\n"
        f"• Key: {_key_text(features)}\n"
        f"• Energy: {energy_label(features.energy)}\n"
        f"• Danceability: {_percent(features.danceability, 0)}"
    )


def format_analysis_message(
    file_name: str,
    features: FeatureSet,
    creative: str | None,
    skipped_stages: tuple[str, ...] = (),
) -> str:
    lines = [
        f"**Complete Analysis: {file_name}**",
        "",
        "**Technical Analysis:**",
        f"• **Tempo**: {_fmt(features.bpm, 1, ' BPM')}",
        f"• **Key**: {_key_text(features)}",
        f"• **Duration**: {features.duration_seconds:.1f} seconds",
        f"• **Energy**: {_fmt(features.energy, 0)} ({energy_label(features.energy)})",
        f"• **Danceability**: {_percent(features.danceability, 0)}",
        f"• **Loudness**: {_fmt(features.loudness, 1)}",
        f"• **Spectral Centroid**: {_fmt(features.spectral_centroid, 0, ' Hz')} (brightness)",
        f"• **Spectral Rolloff**: {_fmt(features.spectral_rolloff, 0, ' Hz')}",
        "• **Zero Crossing Rate**: "
        + (
            "N/A"
            if features.zero_crossing_rate is None
            else f"{features.zero_crossing_rate * 1000:.1f}"
        )
        + " (texture)",
        f"• **Onset Rate**: {_fmt(features.onset_rate, 2, ' events/sec')}",
    ]
    if features.chords:
        progression = " → ".join(c.label for c in features.chords)
        lines.append(f"• **Chord Progression**: {progression} ({len(features.chords)} changes)")
    lines.append("")

    if skipped_stages:
        lines.append(f"*Skipped: {', '.join(skipped_stages)}*")
        lines.append("")

    if creative:
        lines.append(f"**Creative Analysis:**\n{creative}")
    else:
        lines.append(CREATIVE_UNAVAILABLE)
    return "\n".join(lines)


def compile_result(
    file_name: str,
    features: FeatureSet,
    creative: str | None,
    *,
    run_id: str = "",
    processing_time_ms: float = 0.0,
    skipped_stages: tuple[str, ...] = (),
) -> AnalysisResult:
    """Successful result — commentary may be absent (degraded but successful)."""
    return AnalysisResult(
        status=AnalysisStatus.SUCCESS,
        file_name=file_name,
        technical=features,
        creative=creative or None,
        message=format_analysis_message(file_name, features, creative, skipped_stages),
        final_message=SUCCESS_FINAL_MESSAGE,
        run_id=run_id,
        processing_time_ms=processing_time_ms,
        skipped_stages=skipped_stages,
    )


def build_failure_result(
    file_name: str,
    cause: str,
    *,
    run_id: str = "",
    processing_time_ms: float = 0.0,
) -> AnalysisResult:
    """Failed result — no technical features, message names the fatal cause."""
    return AnalysisResult(
        status=AnalysisStatus.FAILURE,
        file_name=file_name,
        technical=None,
        creative=None,
        message=f"Failed to analyze audio: {cause or 'Unknown error'}",
        final_message=FAILURE_FINAL_MESSAGE,
        run_id=run_id,
        processing_time_ms=processing_time_ms,
    )


# ---------------------------------------------------------------------------
# Sectioned feature report
# ---------------------------------------------------------------------------


def _vector_preview(values: tuple[float, ...] | None, count: int) -> str:
    if values is None:
        return "N/A"
    head = ", ".join(f"{v:.2f}" for v in values[:count])
    return f"[{head}{'...' if len(values) > count else ''}]"


def format_feature_report(features: FeatureSet) -> str:
    """Multi-section plain-text dump of every feature, for terminals and logs.

    Lines for optional features that are absent are omitted, except the
    headline values (BPM, key, energy) which print ``N/A``.
    """
    lines: list[str | None] = [
        "🎵 RHYTHM",
        f"  BPM: {_fmt(features.bpm, 1)}",
        f"  Beats: {features.beats_count if features.beats_count is not None else 'N/A'}",
        (
            f"  Rhythm Confidence: {features.rhythm_confidence:.2f}"
            if features.rhythm_confidence is not None
            else None
        ),
        (
            f"  Onset Rate: {features.onset_rate:.2f} onsets/sec"
            if features.onset_rate is not None
            else None
        ),
        "",
        "🎹 TONAL",
        f"  Key: {_key_text(features)}",
        f"  Key Strength: {_fmt(features.key_strength, 3)}",
        "",
        "📊 ENERGY",
        f"  Energy: {_fmt(features.energy, 4)}",
        f"  Loudness: {_fmt(features.loudness, 2)}",
        f"  RMS: {_fmt(features.rms, 4)}",
        (
            f"  Dynamic Complexity: {features.dynamic_complexity:.4f}"
            if features.dynamic_complexity is not None
            else None
        ),
        "",
        "🌈 SPECTRAL",
        f"  Centroid: {_fmt(features.spectral_centroid, 2, ' Hz')}",
        f"  Rolloff: {_fmt(features.spectral_rolloff, 2, ' Hz')}",
        f"  Flatness: {_fmt(features.spectral_flatness, 4)} (0=tonal, 1=noise)",
        f"  Zero Crossing Rate: {_fmt(features.zero_crossing_rate, 4)}",
        "",
        "🎨 TIMBRE",
        (
            f"  MFCC ({len(features.mfcc)} coeffs): {_vector_preview(features.mfcc, 5)}"
            if features.mfcc is not None
            else None
        ),
        f"  Mel Bands: {len(features.mel_bands)} bands" if features.mel_bands is not None else None,
        (
            f"  Spectral Contrast: {len(features.spectral_contrast)} bands"
            if features.spectral_contrast is not None
            else None
        ),
        "",
        "🎼 HARMONIC",
        f"  HPCP/Chroma: {_vector_preview(features.hpcp, 12)}",
    ]
    if features.chords:
        lines.append(f"  Chord Progression: {' → '.join(c.label for c in features.chords)}")
        lines.append(f"  Chord Changes: {len(features.chords)}")
    lines.extend(
        [
            "",
            "💃 PRODUCTION",
            f"  Danceability: {_percent(features.danceability, 1)}",
            "",
            "📋 METADATA",
            f"  Duration: {features.duration_seconds:.2f} seconds",
            f"  Sample Rate: {features.sample_rate} Hz",
        ]
    )
    # Blank separators survive; absent optional lines (None) do not.
    return "\n".join(line for line in lines if line is not None)

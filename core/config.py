"""
Configuration dataclasses for the audio analysis pipeline.

These immutable config objects decouple tuning parameters from function
signatures, so the chord tracker, smoother, prompt builder and stages all
read the same validated values.
"""

from dataclasses import dataclass

# Expiry windows accepted by the temporary upload host.
VALID_UPLOAD_TTLS: frozenset[str] = frozenset({"1h", "12h", "24h", "72h"})


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Configuration for one audio analysis pipeline.

    Attributes:
        chord_frame_size: Samples per chord-tracking frame. Defaults to 4096.
        chord_hop_size: Samples between consecutive frame starts. Defaults to
            2048 (50% overlap).
        max_peaks: Maximum spectral peaks kept per frame, ordered by magnitude.
        peak_threshold: Minimum peak magnitude relative to the frame maximum.
        min_frequency: Lower bound (Hz) for peaks and HPCP contributions.
        max_frequency: Upper bound (Hz) for peaks and HPCP contributions.
        reference_frequency: Tuning reference for HPCP bin 0 (A4 = 440 Hz).
        hpcp_harmonics: Number of harmonics contributing to each peak's pitch
            class.
        split_frequency: Boundary between low and high HPCP bands when
            ``hpcp_band_preset`` is enabled.
        hpcp_band_preset: Normalize low/high HPCP bands separately.
        min_chord_run: Minimum consecutive frames for a chord to survive
            smoothing (the first run in a stream is exempt).
        max_prompt_chords: Chord events listed in the language-model prompt.
        annotation_timeout_seconds: Caller-side timeout for the creative call.
        annotation_temperature: Sampling temperature for the creative call.
        annotation_max_tokens: Token budget for the creative call.
        upload_ttl: Expiry window of the temporary upload.
        max_upload_bytes: Files larger than this are never uploaded.
        progress_buffer_size: Capacity of the bounded progress channel.

    Example:
        >>> config = AnalysisConfig(min_chord_run=4, annotation_timeout_seconds=60.0)
        >>> orchestrator = PipelineOrchestrator(config=config)
    """

    chord_frame_size: int = 4096
    chord_hop_size: int = 2048
    max_peaks: int = 100
    peak_threshold: float = 0.00001
    min_frequency: float = 40.0
    max_frequency: float = 5000.0
    reference_frequency: float = 440.0
    hpcp_harmonics: int = 4
    split_frequency: float = 500.0
    hpcp_band_preset: bool = False
    min_chord_run: int = 3
    max_prompt_chords: int = 20
    annotation_timeout_seconds: float = 120.0
    annotation_temperature: float = 0.7
    annotation_max_tokens: int = 1500
    upload_ttl: str = "1h"
    max_upload_bytes: int = 50 * 1024 * 1024
    progress_buffer_size: int = 64

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.chord_frame_size <= 0:
            raise ValueError(f"chord_frame_size must be positive, got {self.chord_frame_size}")
        if not 0 < self.chord_hop_size <= self.chord_frame_size:
            raise ValueError(
                f"chord_hop_size must be in (0, chord_frame_size], got {self.chord_hop_size}"
            )
        if self.max_peaks <= 0:
            raise ValueError(f"max_peaks must be positive, got {self.max_peaks}")
        if self.peak_threshold < 0:
            raise ValueError(f"peak_threshold must be non-negative, got {self.peak_threshold}")
        if not 0 < self.min_frequency < self.max_frequency:
            raise ValueError(
                f"frequency range must satisfy 0 < min < max, "
                f"got ({self.min_frequency}, {self.max_frequency})"
            )
        if self.reference_frequency <= 0:
            raise ValueError(
                f"reference_frequency must be positive, got {self.reference_frequency}"
            )
        if self.hpcp_harmonics < 0:
            raise ValueError(f"hpcp_harmonics must be non-negative, got {self.hpcp_harmonics}")
        if self.min_chord_run < 1:
            raise ValueError(f"min_chord_run must be at least 1, got {self.min_chord_run}")
        if self.max_prompt_chords < 0:
            raise ValueError(
                f"max_prompt_chords must be non-negative, got {self.max_prompt_chords}"
            )
        if self.annotation_timeout_seconds <= 0:
            raise ValueError(
                "annotation_timeout_seconds must be positive, "
                f"got {self.annotation_timeout_seconds}"
            )
        if not 0.0 <= self.annotation_temperature <= 2.0:
            raise ValueError(
                f"annotation_temperature must be between 0.0 and 2.0, "
                f"got {self.annotation_temperature}"
            )
        if self.annotation_max_tokens < 1:
            raise ValueError(
                f"annotation_max_tokens must be positive, got {self.annotation_max_tokens}"
            )
        if self.upload_ttl not in VALID_UPLOAD_TTLS:
            raise ValueError(
                f"Unknown upload_ttl {self.upload_ttl!r}, "
                f"valid options: {sorted(VALID_UPLOAD_TTLS)}"
            )
        if self.max_upload_bytes <= 0:
            raise ValueError(f"max_upload_bytes must be positive, got {self.max_upload_bytes}")
        if self.progress_buffer_size < 1:
            raise ValueError(
                f"progress_buffer_size must be at least 1, got {self.progress_buffer_size}"
            )


# Pre-defined configurations

DEFAULT_CONFIG = AnalysisConfig()
"""Default configuration: 4096/2048 chord frames, 3-frame runs, 120s annotation timeout."""

FAST_CONFIG = AnalysisConfig(chord_frame_size=4096, chord_hop_size=4096, max_peaks=60)
"""Non-overlapping chord frames and fewer peaks, for quick previews of long files."""

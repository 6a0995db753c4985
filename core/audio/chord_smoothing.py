"""
core/audio/chord_smoothing.py — Run-length smoothing of a raw chord stream.

Frame-level chord classification flickers: a sustained pad can read as
C, C, Am, C, C because one frame caught a passing note. Smoothing groups
consecutive equal labels into runs and keeps only runs long enough to be a
real chord change.

Rules (applied left to right):
    1. Streams of two events or fewer are returned unchanged.
    2. A finished run is kept when it has at least ``min_run`` frames, or
       when nothing has been kept yet — the first run in the stream is
       always kept, whatever its length.
    3. The final run gets no such exemption: it needs ``min_run`` frames.
    4. A kept run is emitted at its first frame's timestamp with the mean
       of its frames' confidences.

Pure function — no I/O, no state.
"""

from __future__ import annotations

from collections.abc import Iterable

from core.audio.types import ChordEvent

DEFAULT_MIN_RUN = 3


def smooth_chord_progression(
    raw: Iterable[ChordEvent],
    *,
    min_run: int = DEFAULT_MIN_RUN,
) -> list[ChordEvent]:
    """Collapse a time-ordered raw chord stream into a denoised progression.

    Args:
        raw: Per-frame chord events ordered by timestamp.
        min_run: Minimum consecutive frames for a run to survive.

    Returns:
        Chord events with strictly increasing timestamps where no two
        consecutive entries share a label.

    Example:
        >>> labels = ["C", "G", "G", "G", "C"]
        >>> events = [ChordEvent(lb, 0.5, i * 0.1) for i, lb in enumerate(labels)]
        >>> [e.label for e in smooth_chord_progression(events)]
        ['C', 'G']
    """
    events = list(raw)
    if len(events) <= 2:
        return events

    smoothed: list[ChordEvent] = []

    current = events[0]
    run_start = current.timestamp_seconds
    confidence_sum = current.confidence
    count = 1

    for event in events[1:]:
        if event.label == current.label:
            confidence_sum += event.confidence
            count += 1
            continue

        if count >= min_run or not smoothed:
            _append_run(smoothed, current.label, confidence_sum / count, run_start)

        current = event
        run_start = event.timestamp_seconds
        confidence_sum = event.confidence
        count = 1

    if count >= min_run:
        _append_run(smoothed, current.label, confidence_sum / count, run_start)

    return smoothed


def _append_run(
    smoothed: list[ChordEvent],
    label: str,
    confidence: float,
    start: float,
) -> None:
    """Append a run, merging into the previous entry when labels repeat.

    Dropping a short run between two runs of the same chord would otherwise
    leave two consecutive entries with one label (C, [Am], C → C, C).
    """
    if smoothed and smoothed[-1].label == label:
        return
    smoothed.append(ChordEvent(label=label, confidence=confidence, timestamp_seconds=start))

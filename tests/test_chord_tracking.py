"""
Tests for core/audio/chord_tracking.py — frame-by-frame chord classification.

Uses FakeBackend from conftest: frame ``i`` is classified as
``chord_labels[i]``; frames listed in ``fail_frames`` raise mid-chain.
"""

import logging

import numpy as np
import pytest
from conftest import SAMPLE_RATE, FakeBackend

from core.audio.chord_tracking import track_chords
from core.config import AnalysisConfig
from core.pipeline.cancellation import AnalysisCancelled, CancellationToken


class TestTrackChords:
    def test_one_event_per_frame(self, fake_backend: FakeBackend) -> None:
        events = list(track_chords(fake_backend.signal, SAMPLE_RATE, backend=fake_backend))
        assert len(events) == 42
        assert [e.label for e in events[:11]] == ["C"] * 10 + ["G"]

    def test_timestamps_from_frame_index(self, fake_backend: FakeBackend) -> None:
        config = AnalysisConfig()
        events = list(
            track_chords(fake_backend.signal, SAMPLE_RATE, backend=fake_backend, config=config)
        )
        step = config.chord_hop_size / SAMPLE_RATE
        for index, event in enumerate(events):
            assert event.timestamp_seconds == pytest.approx(index * step)

    def test_custom_hop(self) -> None:
        backend = FakeBackend(chord_labels=("C",) * 100)
        config = AnalysisConfig(chord_frame_size=4096, chord_hop_size=4096)
        events = list(track_chords(backend.signal, SAMPLE_RATE, backend=backend, config=config))
        assert len(events) == 21
        assert events[1].timestamp_seconds == pytest.approx(4096 / SAMPLE_RATE)

    def test_no_chord_frames_filtered(self) -> None:
        backend = FakeBackend(chord_labels=("C", "N", "N", "G"))
        events = list(track_chords(backend.signal, SAMPLE_RATE, backend=backend))
        assert [e.label for e in events] == ["C", "G"]
        # Frame 3 keeps its own timestamp, gaps are not compressed
        assert events[1].timestamp_seconds == pytest.approx(3 * 2048 / SAMPLE_RATE)

    def test_failing_frame_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        backend = FakeBackend(chord_labels=("C",) * 42, fail_frames={2, 5})
        with caplog.at_level(logging.WARNING, logger="core.audio.chord_tracking"):
            events = list(track_chords(backend.signal, SAMPLE_RATE, backend=backend))
        assert len(events) == 40
        assert all(e.timestamp_seconds != pytest.approx(2 * 2048 / SAMPLE_RATE) for e in events)
        assert "skipped 2 of 42 frames" in caplog.text

    def test_confidence_clipped(self) -> None:
        backend = FakeBackend(chord_labels=("C",) * 42)
        backend.chords_detection = lambda hpcp: ("C", 1.7)  # type: ignore[method-assign]
        events = list(track_chords(backend.signal, SAMPLE_RATE, backend=backend))
        assert all(e.confidence == 1.0 for e in events)

    def test_lazy_generator(self, fake_backend: FakeBackend) -> None:
        gen = track_chords(fake_backend.signal, SAMPLE_RATE, backend=fake_backend)
        first = next(gen)
        assert first.label == "C"
        assert first.timestamp_seconds == 0.0

    def test_restartable(self, fake_backend: FakeBackend) -> None:
        first = list(track_chords(fake_backend.signal, SAMPLE_RATE, backend=fake_backend))
        second = list(track_chords(fake_backend.signal, SAMPLE_RATE, backend=fake_backend))
        assert first == second

    def test_signal_shorter_than_frame_is_one_frame(self) -> None:
        backend = FakeBackend()
        events = list(track_chords(backend.signal[:100], SAMPLE_RATE, backend=backend))
        assert [(e.label, e.timestamp_seconds) for e in events] == [("C", 0.0)]

    def test_empty_signal_yields_nothing(self, fake_backend: FakeBackend) -> None:
        assert list(track_chords(np.zeros(0), SAMPLE_RATE, backend=fake_backend)) == []

    def test_cancellation_stops_scan(self, fake_backend: FakeBackend) -> None:
        token = CancellationToken()
        gen = track_chords(fake_backend.signal, SAMPLE_RATE, backend=fake_backend, cancel=token)
        next(gen)
        token.cancel("stop")
        with pytest.raises(AnalysisCancelled):
            next(gen)

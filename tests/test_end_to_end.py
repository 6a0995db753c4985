"""
End-to-end technical analysis on a synthesized track with the real essentia
and librosa feature backend.

Skipped when either library is not installed. Upload and commentary are faked, so
the test needs no network.
"""

from pathlib import Path

import numpy as np
import pytest
from conftest import FakeAnnotator, FakeUploadStage
from scipy.io import wavfile

pytest.importorskip("librosa")
pytest.importorskip("essentia")

from core.audio.types import AudioSource  # noqa: E402
from ingestion.feature_backend import EssentiaFeatureBackend  # noqa: E402
from ingestion.pipeline import PipelineOrchestrator  # noqa: E402

SR = 22050
DURATION = 8.0
BPM = 128.0


def _synth_track() -> np.ndarray:
    """Four-on-the-floor kick at 128 BPM over a sustained C major pad."""
    t = np.arange(int(SR * DURATION)) / SR
    pad = sum(np.sin(2 * np.pi * f * t) for f in (261.63, 329.63, 392.00)) / 3.0

    kick = np.zeros_like(t)
    beat = 60.0 / BPM
    kick_len = int(0.12 * SR)
    kt = np.arange(kick_len) / SR
    hit = np.sin(2 * np.pi * 55.0 * kt) * np.exp(-kt * 35.0)
    for start in np.arange(0.0, DURATION, beat):
        i = int(start * SR)
        n = min(kick_len, kick.size - i)
        kick[i : i + n] += hit[:n]

    signal = 0.4 * pad + 0.8 * kick
    return (signal / np.max(np.abs(signal)) * 0.9).astype(np.float32)


@pytest.fixture(scope="module")
def track(tmp_path_factory: pytest.TempPathFactory) -> Path:
    path = tmp_path_factory.mktemp("e2e") / "kick_pad.wav"
    wavfile.write(str(path), SR, _synth_track())
    return path


@pytest.fixture(scope="module")
def orchestrator() -> PipelineOrchestrator:
    return PipelineOrchestrator(
        uploader=FakeUploadStage(url=None),
        annotator=FakeAnnotator(),
        backend=EssentiaFeatureBackend(),
    )


class TestEndToEnd:
    def test_technical_features(self, track: Path, orchestrator: PipelineOrchestrator) -> None:
        result = orchestrator.run(AudioSource(str(track)))
        assert result.succeeded, result.message
        features = result.technical
        assert features.duration_seconds == pytest.approx(DURATION, abs=0.01)
        assert features.sample_rate == SR
        assert features.bpm == pytest.approx(BPM, abs=1.0)
        assert features.energy is not None and features.energy > 0
        assert len(features.mfcc) == 13

    def test_detects_c_major_chord(self, track: Path, orchestrator: PipelineOrchestrator) -> None:
        features = orchestrator.run(AudioSource(str(track))).technical
        labels = [c.label for c in features.chords]
        assert labels
        assert "C" in labels
        timestamps = [c.timestamp_seconds for c in features.chords]
        assert timestamps == sorted(timestamps)

    def test_repeatable(self, track: Path, orchestrator: PipelineOrchestrator) -> None:
        first = orchestrator.run(AudioSource(str(track))).technical
        second = orchestrator.run(AudioSource(str(track))).technical
        assert first == second

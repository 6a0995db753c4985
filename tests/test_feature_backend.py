"""
Tests for ingestion/feature_backend.py — essentia + librosa FeatureExtractionPort.

essentia.standard and librosa are always MagicMocks here: either injected
into the constructor or placed in sys.modules for the lazy import path.
Real-library behaviour is covered by test_end_to_end.py.
"""

import threading
import time
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from core.audio.features import _MAJOR_PROFILE
from core.audio.port import NO_CHORD, FeatureExtractionPort
from core.audio.types import Key, RhythmEstimate
from ingestion import feature_backend as fb
from ingestion.feature_backend import (
    ESSENTIA_RATE,
    WINDOW_TYPE,
    EssentiaFeatureBackend,
    get_feature_backend,
    reset_feature_backend,
)

SR = 22050


@pytest.fixture()
def mock_es() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def mock_librosa() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def backend(mock_es: MagicMock, mock_librosa: MagicMock) -> EssentiaFeatureBackend:
    return EssentiaFeatureBackend(essentia=mock_es, librosa=mock_librosa)


@pytest.fixture()
def clean_singleton():
    reset_feature_backend()
    yield
    reset_feature_backend()


def _audio_modules() -> dict[str, MagicMock]:
    essentia = MagicMock()
    return {
        "essentia": essentia,
        "essentia.standard": essentia.standard,
        "librosa": MagicMock(),
    }


class TestProtocol:
    def test_satisfies_port(self, backend: EssentiaFeatureBackend) -> None:
        assert isinstance(backend, FeatureExtractionPort)

    def test_lazy_imports(self) -> None:
        modules = _audio_modules()
        with patch.dict("sys.modules", modules):
            lazy = EssentiaFeatureBackend()
            assert lazy._get_essentia() is modules["essentia.standard"]
            assert lazy._get_librosa() is modules["librosa"]

    def test_decode_delegates_to_loader(self, backend: EssentiaFeatureBackend) -> None:
        with patch.object(fb, "load_audio", return_value=(np.ones(4), SR)) as loader:
            signal, sr = backend.decode("/tmp/a.wav")
        loader.assert_called_once_with("/tmp/a.wav")
        assert sr == SR
        assert signal.size == 4


class TestAlgorithmCache:
    def test_reused_for_same_parameters(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        mock_es.Energy.return_value.return_value = 1.0
        backend.energy(np.ones(8))
        backend.energy(np.ones(8))
        assert mock_es.Energy.call_count == 1

    def test_new_instance_per_parameter_set(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        mock_es.PercivalBpmEstimator.return_value.return_value = 120.0
        backend.percival_bpm(np.ones(8), 22050)
        backend.percival_bpm(np.ones(8), 44100)
        rates = [c.kwargs["sampleRate"] for c in mock_es.PercivalBpmEstimator.call_args_list]
        assert rates == [22050, 44100]

    def test_each_thread_configures_its_own(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        mock_es.Energy.return_value.return_value = 1.0
        backend.energy(np.ones(8))
        worker = threading.Thread(target=backend.energy, args=(np.ones(8),))
        worker.start()
        worker.join(timeout=5)
        assert mock_es.Energy.call_count == 2


class TestFraming:
    def test_full_frames_only(self, backend: EssentiaFeatureBackend) -> None:
        frames = list(backend.frame_generator(np.arange(10.0), 4, 2))
        assert [f.tolist() for f in frames] == [
            [0.0, 1.0, 2.0, 3.0],
            [2.0, 3.0, 4.0, 5.0],
            [4.0, 5.0, 6.0, 7.0],
            [6.0, 7.0, 8.0, 9.0],
        ]

    def test_short_signal_padded(self, backend: EssentiaFeatureBackend) -> None:
        frames = list(backend.frame_generator(np.ones(3), 8, 4))
        assert len(frames) == 1
        assert frames[0].tolist() == [1.0, 1.0, 1.0, 0.0, 0.0, 0.0, 0.0, 0.0]

    def test_empty_signal(self, backend: EssentiaFeatureBackend) -> None:
        assert list(backend.frame_generator(np.zeros(0), 8, 4)) == []

    def test_invalid_sizes(self, backend: EssentiaFeatureBackend) -> None:
        with pytest.raises(ValueError):
            list(backend.frame_generator(np.ones(10), 0, 4))


class TestHarmonicChain:
    def test_windowing_is_normalized_blackman_harris(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        mock_es.Windowing.return_value.side_effect = lambda frame: frame * 0.5
        windowed = backend.windowing(np.ones(1024))
        mock_es.Windowing.assert_called_once_with(type=WINDOW_TYPE, normalized=True)
        assert windowed.dtype == np.float32
        assert windowed.tolist() == [0.5] * 1024

    def test_spectrum_sized_to_frame(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        mock_es.Spectrum.return_value.return_value = np.zeros(2049, dtype=np.float32)
        assert backend.spectrum(np.zeros(4096)).shape == (2049,)
        mock_es.Spectrum.assert_called_once_with(size=4096)

    def test_spectral_peaks_parameters(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        mock_es.SpectralPeaks.return_value.return_value = (
            np.array([440.0, 880.0], dtype=np.float32),
            np.array([1.0, 0.5], dtype=np.float32),
        )
        freqs, mags = backend.spectral_peaks(
            np.ones(2049),
            SR,
            max_peaks=100,
            threshold=0.00001,
            min_frequency=40.0,
            max_frequency=5000.0,
        )
        assert freqs.tolist() == [440.0, 880.0]
        assert mags.tolist() == [1.0, 0.5]
        kwargs = mock_es.SpectralPeaks.call_args.kwargs
        assert kwargs["orderBy"] == "magnitude"
        assert kwargs["maxPeaks"] == 100
        assert kwargs["minFrequency"] == 40.0
        assert kwargs["maxFrequency"] == 5000.0
        assert kwargs["sampleRate"] == float(SR)

    def test_whitening_keeps_frequencies(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        mock_es.SpectralWhitening.return_value.return_value = np.array(
            [0.9, 0.8], dtype=np.float32
        )
        freqs, mags = backend.spectral_whitening(
            np.ones(2049), np.array([440.0, 880.0]), np.array([1.0, 0.5]), SR, max_frequency=5000.0
        )
        assert freqs.tolist() == [440.0, 880.0]
        assert mags.tolist() == pytest.approx([0.9, 0.8])
        mock_es.SpectralWhitening.assert_called_once_with(sampleRate=float(SR), maxFrequency=5000.0)

    def test_hpcp_parameters(self, backend: EssentiaFeatureBackend, mock_es: MagicMock) -> None:
        mock_es.HPCP.return_value.return_value = np.arange(12, dtype=np.float32)
        profile = backend.hpcp(
            np.array([440.0]),
            np.array([1.0]),
            reference_frequency=440.0,
            harmonics=4,
            min_frequency=40.0,
            max_frequency=5000.0,
            split_frequency=500.0,
            band_preset=False,
            sample_rate=SR,
        )
        assert profile.dtype == np.float64
        assert profile.shape == (12,)
        kwargs = mock_es.HPCP.call_args.kwargs
        assert kwargs["size"] == 12
        assert kwargs["harmonics"] == 4
        assert kwargs["splitFrequency"] == 500.0
        assert kwargs["bandPreset"] is False


class TestChordsDetection:
    def test_label_and_strength(self, backend: EssentiaFeatureBackend, mock_es: MagicMock) -> None:
        mock_es.ChordsDetection.return_value.return_value = (["Am"], np.array([0.8]))
        label, strength = backend.chords_detection(np.linspace(0.1, 1.0, 12))
        assert (label, strength) == ("Am", pytest.approx(0.8))
        (pcp,), _ = mock_es.ChordsDetection.return_value.call_args
        assert pcp.shape == (1, 12)

    def test_silent_profile_skips_essentia(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        assert backend.chords_detection(np.zeros(12)) == (NO_CHORD, 0.0)
        mock_es.ChordsDetection.return_value.assert_not_called()

    def test_non_positive_strength_is_no_chord(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        mock_es.ChordsDetection.return_value.return_value = (["C"], np.array([-0.2]))
        assert backend.chords_detection(np.ones(12)) == (NO_CHORD, 0.0)

    def test_wrong_shape(self, backend: EssentiaFeatureBackend) -> None:
        with pytest.raises(ValueError, match="12-bin"):
            backend.chords_detection(np.ones(36))


class TestRhythm:
    def test_percival(self, backend: EssentiaFeatureBackend, mock_es: MagicMock) -> None:
        mock_es.PercivalBpmEstimator.return_value.return_value = 128.2
        assert backend.percival_bpm(np.zeros(SR), SR) == pytest.approx(128.2)
        mock_es.PercivalBpmEstimator.assert_called_once_with(sampleRate=SR)

    def test_percival_no_tempo_raises(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        mock_es.PercivalBpmEstimator.return_value.return_value = 0.0
        with pytest.raises(ValueError, match="no tempo"):
            backend.percival_bpm(np.zeros(SR), SR)

    def test_rhythm_extractor_resamples(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock, mock_librosa: MagicMock
    ) -> None:
        mock_librosa.resample.return_value = np.zeros(ESSENTIA_RATE)
        mock_es.RhythmExtractor2013.return_value.return_value = (
            120.0,
            np.array([0.5, 1.0, 1.5]),
            3.9,
            np.array([120.0]),
            np.array([0.5, 0.5]),
        )
        rhythm = backend.rhythm_extractor(np.zeros(SR), SR)
        assert rhythm == RhythmEstimate(bpm=120.0, beats_count=3, confidence=3.9)
        assert mock_librosa.resample.call_args.kwargs == {
            "orig_sr": SR,
            "target_sr": ESSENTIA_RATE,
        }
        mock_es.RhythmExtractor2013.assert_called_once_with(method="multifeature")

    def test_rhythm_extractor_native_rate(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock, mock_librosa: MagicMock
    ) -> None:
        mock_es.RhythmExtractor2013.return_value.return_value = (
            100.0,
            np.array([]),
            0.0,
            np.array([]),
            np.array([]),
        )
        backend.rhythm_extractor(np.zeros(ESSENTIA_RATE), ESSENTIA_RATE)
        mock_librosa.resample.assert_not_called()

    def test_rhythm_extractor_no_tempo(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        mock_es.RhythmExtractor2013.return_value.return_value = (
            0.0,
            np.array([]),
            0.0,
            np.array([]),
            np.array([]),
        )
        with pytest.raises(ValueError, match="no tempo"):
            backend.rhythm_extractor(np.zeros(ESSENTIA_RATE), ESSENTIA_RATE)

    def test_onset_rate(self, backend: EssentiaFeatureBackend, mock_es: MagicMock) -> None:
        mock_es.OnsetRate.return_value.return_value = (np.array([0.1, 0.6]), 2.0)
        assert backend.onset_rate(np.zeros(ESSENTIA_RATE), ESSENTIA_RATE) == 2.0


class TestScalars:
    def test_key_from_chroma(
        self, backend: EssentiaFeatureBackend, mock_librosa: MagicMock
    ) -> None:
        mock_librosa.feature.chroma_cqt.return_value = np.tile(
            np.array(_MAJOR_PROFILE)[:, None], (1, 20)
        )
        key = backend.key(np.zeros(SR), SR)
        assert isinstance(key, Key)
        assert key.label == "C major"

    def test_energy_loudness_rms(self, backend: EssentiaFeatureBackend, mock_es: MagicMock) -> None:
        mock_es.Energy.return_value.return_value = 25.0
        mock_es.Loudness.return_value.return_value = 8.6
        mock_es.RMS.return_value.return_value = 0.5
        signal = np.full(100, 0.5)
        assert backend.energy(signal) == 25.0
        assert backend.loudness(signal) == pytest.approx(8.6)
        assert backend.rms(signal) == 0.5
        (passed,), _ = mock_es.Energy.return_value.call_args
        assert passed.dtype == np.float32

    def test_dynamic_complexity(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock
    ) -> None:
        mock_es.DynamicComplexity.return_value.return_value = (4.5, -12.0)
        assert backend.dynamic_complexity(np.zeros(SR), SR) == 4.5
        mock_es.DynamicComplexity.assert_called_once_with(sampleRate=float(SR))

    @pytest.mark.parametrize(("raw", "expected"), [(1.5, 0.5), (0.0, 0.0), (3.6, 1.0)])
    def test_danceability_scaled_to_unit_range(
        self, backend: EssentiaFeatureBackend, mock_es: MagicMock, raw: float, expected: float
    ) -> None:
        mock_es.Danceability.return_value.return_value = (raw, np.array([0.7]))
        assert backend.danceability(np.zeros(SR), SR) == pytest.approx(expected)

    def test_spectral_means(
        self, backend: EssentiaFeatureBackend, mock_librosa: MagicMock
    ) -> None:
        mock_librosa.feature.spectral_centroid.return_value = np.array([[1000.0, 3000.0]])
        mock_librosa.feature.spectral_rolloff.return_value = np.array([[4000.0, 6000.0]])
        mock_librosa.feature.spectral_flatness.return_value = np.array([[0.1, 0.3]])
        mock_librosa.feature.zero_crossing_rate.return_value = np.array([[0.02, 0.04]])
        signal = np.zeros(SR)
        assert backend.spectral_centroid(signal, SR) == pytest.approx(2000.0)
        assert backend.spectral_rolloff(signal, SR) == pytest.approx(5000.0)
        assert backend.spectral_flatness(signal) == pytest.approx(0.2)
        assert backend.zero_crossing_rate(signal) == pytest.approx(0.03)
        rolloff_kwargs = mock_librosa.feature.spectral_rolloff.call_args.kwargs
        assert rolloff_kwargs["roll_percent"] == 0.85


class TestVectors:
    def test_mfcc_mean_per_coefficient(
        self, backend: EssentiaFeatureBackend, mock_librosa: MagicMock
    ) -> None:
        mock_librosa.feature.mfcc.return_value = np.tile(np.arange(13.0)[:, None], (1, 40))
        assert backend.mfcc(np.zeros(SR), SR).tolist() == list(np.arange(13.0))
        assert mock_librosa.feature.mfcc.call_args.kwargs["n_mfcc"] == 13

    def test_mel_bands(self, backend: EssentiaFeatureBackend, mock_librosa: MagicMock) -> None:
        mock_librosa.feature.melspectrogram.return_value = np.ones((24, 10))
        assert backend.mel_bands(np.zeros(SR), SR).shape == (24,)

    def test_spectral_contrast(
        self, backend: EssentiaFeatureBackend, mock_librosa: MagicMock
    ) -> None:
        mock_librosa.feature.spectral_contrast.return_value = np.ones((7, 10)) * 2
        assert backend.spectral_contrast(np.zeros(SR), SR).tolist() == [2.0] * 7


class TestSingleton:
    def test_same_instance(self, clean_singleton) -> None:
        with patch.dict("sys.modules", _audio_modules()):
            assert get_feature_backend() is get_feature_backend()

    def test_reset_rebuilds(self, clean_singleton) -> None:
        with patch.dict("sys.modules", _audio_modules()):
            first = get_feature_backend()
            reset_feature_backend()
            assert get_feature_backend() is not first

    def test_concurrent_first_use_constructs_once(self, clean_singleton) -> None:
        real_cls = EssentiaFeatureBackend

        def slow_construct() -> EssentiaFeatureBackend:
            time.sleep(0.05)
            return real_cls(essentia=MagicMock(), librosa=MagicMock())

        barrier = threading.Barrier(8)
        results: list[EssentiaFeatureBackend] = []
        lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            instance = get_feature_backend()
            with lock:
                results.append(instance)

        with patch.object(fb, "EssentiaFeatureBackend", side_effect=slow_construct) as ctor:
            threads = [threading.Thread(target=worker) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=5)

        assert ctor.call_count == 1
        assert len(results) == 8
        assert all(r is results[0] for r in results)

"""Unit tests for voiceshield.core.acoustic_features.

Tests cover:
    - Field bounds for arbitrary valid frames
    - Silence frame behaviour (no division by zero)
    - Centroid, flatness, zero-crossing and volume on hand-built frames
    - The spoof-likelihood formula
    - MalformedFrame on contract violations
    - SpectrumAnalyser shape, peak bin, smoothing and reset
"""

from __future__ import annotations

import numpy as np
import pytest

from voiceshield.core.acoustic_features import (
    FeatureSample,
    SpectrumAnalyser,
    extract_features,
    spoof_likelihood,
)
from voiceshield.core.errors import MalformedFrame

N = 2048
BINS = N // 2
RATE = 16000


def _silence() -> tuple[np.ndarray, np.ndarray]:
    return np.zeros(N, dtype=np.float32), np.full(BINS, -np.inf, dtype=np.float32)


def _assert_in_bounds(sample: FeatureSample) -> None:
    assert 0.0 <= sample.volume <= 1.0
    assert 0.0 <= sample.flatness <= 1.0
    assert 0.0 <= sample.zero_cross_rate <= 1.0
    assert 0.0 <= sample.spoof_score <= 1.0
    assert sample.spectral_centroid >= 0.0


# ---------------------------------------------------------------------------
# Bounds
# ---------------------------------------------------------------------------


class TestBounds:
    """Every field stays inside its documented range."""

    @pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
    def test_random_frames_in_bounds(self, seed: int) -> None:
        rng = np.random.default_rng(seed)
        samples = rng.uniform(-1.0, 1.0, N)
        spectrum = rng.uniform(-140.0, 10.0, BINS)
        _assert_in_bounds(extract_features(samples, spectrum, RATE))

    def test_full_scale_square_wave_in_bounds(self) -> None:
        samples = np.where(np.arange(N) % 2 == 0, 1.0, -1.0)
        spectrum = np.zeros(BINS)
        sample = extract_features(samples, spectrum, RATE)
        _assert_in_bounds(sample)
        assert sample.volume == 1.0

    def test_feature_sample_is_immutable(self) -> None:
        sample = FeatureSample()
        with pytest.raises(AttributeError):
            sample.volume = 0.5  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Silence
# ---------------------------------------------------------------------------


class TestSilence:
    """An all-zero frame must not blow up the ratios."""

    def test_volume_is_zero(self) -> None:
        assert extract_features(*_silence(), RATE).volume == pytest.approx(0.0)

    def test_zero_cross_rate_is_zero(self) -> None:
        assert extract_features(*_silence(), RATE).zero_cross_rate == 0.0

    def test_centroid_is_zero(self) -> None:
        assert extract_features(*_silence(), RATE).spectral_centroid == 0.0

    @pytest.mark.parametrize("level_db", [20 * np.log10(1e-8), -200.0])
    def test_floor_spectrum_centroid_is_zero(self, level_db: float) -> None:
        sample = extract_features(np.zeros(N), np.full(BINS, level_db), RATE)
        assert sample.spectral_centroid == 0.0

    def test_floor_spectrum_with_one_live_bin(self) -> None:
        spectrum = np.full(BINS, 20 * np.log10(1e-8))
        spectrum[128] = 0.0
        sample = extract_features(np.zeros(N), spectrum, RATE)
        assert sample.spectral_centroid == pytest.approx(1000.0, rel=0.05)

    def test_silence_spoof_score(self) -> None:
        # Floored spectrum is perfectly flat: 0.6 + 0.3 * 0.6 + 0.1.
        sample = extract_features(*_silence(), RATE)
        assert sample.flatness == pytest.approx(1.0)
        assert sample.spoof_score == pytest.approx(0.88)


# ---------------------------------------------------------------------------
# Individual features
# ---------------------------------------------------------------------------


class TestFeatures:
    """Hand-built frames with known answers."""

    def test_single_bin_centroid(self) -> None:
        # Bin 128 of 1024 at 16 kHz is 128 * 16000 / 2048 = 1000 Hz.
        spectrum = np.full(BINS, -np.inf)
        spectrum[128] = 0.0
        sample = extract_features(np.zeros(N), spectrum, RATE)
        assert sample.spectral_centroid == pytest.approx(1000.0)

    def test_two_equal_bins_centroid_is_midpoint(self) -> None:
        spectrum = np.full(BINS, -np.inf)
        spectrum[64] = -6.0
        spectrum[192] = -6.0
        sample = extract_features(np.zeros(N), spectrum, RATE)
        assert sample.spectral_centroid == pytest.approx(1000.0)

    def test_flat_spectrum_flatness_is_one(self) -> None:
        sample = extract_features(np.zeros(N), np.full(BINS, -20.0), RATE)
        assert sample.flatness == pytest.approx(1.0)

    def test_tonal_spectrum_flatness_near_zero(self) -> None:
        spectrum = np.full(BINS, -np.inf)
        spectrum[100] = 0.0
        sample = extract_features(np.zeros(N), spectrum, RATE)
        assert sample.flatness < 0.01

    def test_alternating_signal_crosses_every_sample(self) -> None:
        samples = np.where(np.arange(N) % 2 == 0, 0.5, -0.5)
        sample = extract_features(samples, np.zeros(BINS), RATE)
        assert sample.zero_cross_rate == pytest.approx((N - 1) / N)

    def test_zero_to_positive_counts_as_crossing(self) -> None:
        samples = np.array([0.0, 0.0, 1.0, 1.0])
        sample = extract_features(samples, np.zeros(2), RATE)
        assert sample.zero_cross_rate == pytest.approx(1 / 4)

    def test_volume_is_scaled_rms(self) -> None:
        sample = extract_features(np.full(N, 0.2), np.zeros(BINS), RATE)
        assert sample.volume == pytest.approx(0.5)

    def test_volume_clamped_to_one(self) -> None:
        sample = extract_features(np.full(N, 0.5), np.zeros(BINS), RATE)
        assert sample.volume == 1.0

    def test_to_dict_has_all_fields(self) -> None:
        data = extract_features(*_silence(), RATE).to_dict()
        assert set(data) == {
            "volume", "spectral_centroid", "flatness", "zero_cross_rate", "spoof_score",
        }


# ---------------------------------------------------------------------------
# Spoof heuristic
# ---------------------------------------------------------------------------


class TestSpoofLikelihood:
    """The weighted blend matches its documented formula."""

    def test_formula(self) -> None:
        # flat 0.5*0.6 + centroid at sweet spot 0.3 + quietness 0.5*0.1
        assert spoof_likelihood(0.1, 1600.0, 0.05) == pytest.approx(0.65)

    def test_loud_tonal_voice_scores_low(self) -> None:
        assert spoof_likelihood(0.0, 0.0, 0.5) == pytest.approx(0.18)

    def test_clamped_to_one(self) -> None:
        assert spoof_likelihood(1.0, 1600.0, 0.0) == pytest.approx(1.0)
        assert spoof_likelihood(1.0, 1600.0, 0.0) <= 1.0

    def test_high_centroid_saturates(self) -> None:
        assert spoof_likelihood(0.0, 12000.0, 1.0) == pytest.approx(0.3 * 0.4)


# ---------------------------------------------------------------------------
# Contract violations
# ---------------------------------------------------------------------------


class TestMalformedFrame:
    """Wrong sizes and non-finite input are programming errors."""

    def test_wrong_bin_count(self) -> None:
        with pytest.raises(MalformedFrame, match="frequency bins"):
            extract_features(np.zeros(N), np.zeros(BINS - 1), RATE)

    def test_two_dimensional_samples(self) -> None:
        with pytest.raises(MalformedFrame):
            extract_features(np.zeros((N, 2)), np.zeros(BINS), RATE)

    def test_empty_frame(self) -> None:
        with pytest.raises(MalformedFrame):
            extract_features(np.zeros(0), np.zeros(0), RATE)

    def test_nan_samples(self) -> None:
        samples = np.zeros(N)
        samples[10] = np.nan
        with pytest.raises(MalformedFrame):
            extract_features(samples, np.zeros(BINS), RATE)

    def test_positive_infinite_magnitude(self) -> None:
        spectrum = np.zeros(BINS)
        spectrum[3] = np.inf
        with pytest.raises(MalformedFrame):
            extract_features(np.zeros(N), spectrum, RATE)

    def test_non_positive_sample_rate(self) -> None:
        with pytest.raises(MalformedFrame):
            extract_features(*_silence(), 0)

    def test_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            extract_features(np.zeros(N), np.zeros(3), RATE)


# ---------------------------------------------------------------------------
# SpectrumAnalyser
# ---------------------------------------------------------------------------


class TestSpectrumAnalyser:
    """The analyser produces frames that extract_features accepts."""

    @staticmethod
    def _sine(freq: float = 1000.0, amplitude: float = 0.5) -> np.ndarray:
        t = np.arange(N) / RATE
        return amplitude * np.sin(2 * np.pi * freq * t)

    def test_output_has_half_fft_bins(self) -> None:
        analyser = SpectrumAnalyser()
        assert analyser.process(self._sine()).shape == (BINS,)
        assert analyser.bin_count == BINS

    def test_sine_peaks_at_its_bin(self) -> None:
        spectrum = SpectrumAnalyser().process(self._sine(1000.0))
        assert int(np.argmax(spectrum)) == 128

    def test_silence_is_negative_infinity(self) -> None:
        spectrum = SpectrumAnalyser().process(np.zeros(N))
        assert np.all(np.isneginf(spectrum))

    def test_smoothing_accumulates_then_reset(self) -> None:
        analyser = SpectrumAnalyser(smoothing=0.85)
        first = analyser.process(self._sine())
        second = analyser.process(self._sine())
        assert second[128] > first[128]

        analyser.reset()
        again = analyser.process(self._sine())
        assert again[128] == pytest.approx(first[128])

    def test_wrong_frame_length(self) -> None:
        with pytest.raises(MalformedFrame):
            SpectrumAnalyser().process(np.zeros(N // 2))

    @pytest.mark.parametrize("fft_size", [0, 100, 16])
    def test_rejects_bad_fft_size(self, fft_size: int) -> None:
        with pytest.raises(ValueError):
            SpectrumAnalyser(fft_size=fft_size)

    def test_rejects_bad_smoothing(self) -> None:
        with pytest.raises(ValueError):
            SpectrumAnalyser(smoothing=1.0)

    def test_analysed_sine_features(self) -> None:
        samples = self._sine(1000.0)
        sample = extract_features(samples, SpectrumAnalyser().process(samples), RATE)
        _assert_in_bounds(sample)
        assert sample.spectral_centroid == pytest.approx(1000.0, rel=0.1)
        assert sample.flatness < 0.2

"""Acoustic feature extraction and spoof-likelihood heuristic.

Each analysis tick pairs one time-domain frame (``N`` float samples in
[-1, 1]) with its frequency-domain frame (``N / 2`` magnitudes in dB)
and reduces them to a :class:`FeatureSample`:

* **volume** – RMS × 2.5, clamped to [0, 1] so normal speech is legible.
* **spectral_centroid** – magnitude-weighted mean bin frequency (Hz).
* **flatness** – geometric / arithmetic mean of linear magnitude
  (1 = noise-like, → 0 = tonal).
* **zero_cross_rate** – sign changes per sample.
* **spoof_score** – a hand-tuned blend of the above.

Spoof heuristic
---------------
::

    flat_score    = min(1, flatness * 5)
    centroid_norm = min(1, centroid / 4000)
    volume_score  = min(1, rms * 10)          # unscaled RMS
    spoof = clamp01(0.6 * flat_score
                    + 0.3 * (1 - |centroid_norm - 0.4|)
                    + 0.1 * (1 - volume_score))

Flat spectra, a mid-band centroid and low loudness push the score up.
This is an explainable proxy, **not** a trained anti-spoofing detector;
the weights below are tuning knobs, not ground truth.

:func:`extract_features` is pure.  :class:`SpectrumAnalyser` produces
the dB frame from raw samples the same way a browser ``AnalyserNode``
does (Blackman window, temporal smoothing) for callers that only have
the time-domain signal.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

import numpy as np

from voiceshield.core.errors import MalformedFrame

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tuning constants
# ---------------------------------------------------------------------------

VOLUME_GAIN: float = 2.5
"""Display gain applied to RMS for the ``volume`` field."""

MAGNITUDE_FLOOR: float = 1e-8
"""Per-bin floor applied before the log in the flatness computation."""

# dB -> linear round trip can land a hair above the floor.
_FLOOR_TOLERANCE: float = 1.0 + 1e-6

FLATNESS_GAIN: float = 5.0
CENTROID_REFERENCE_HZ: float = 4000.0
CENTROID_SWEET_SPOT: float = 0.4
RMS_GAIN: float = 10.0

SPOOF_FLATNESS_WEIGHT: float = 0.6
SPOOF_CENTROID_WEIGHT: float = 0.3
SPOOF_QUIETNESS_WEIGHT: float = 0.1

DEFAULT_FFT_SIZE: int = 2048
DEFAULT_SMOOTHING: float = 0.85


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


# ---------------------------------------------------------------------------
# FeatureSample
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeatureSample:
    """One audio analysis tick.  Superseded by the next tick."""

    volume: float = 0.0
    spectral_centroid: float = 0.0
    flatness: float = 0.0
    zero_cross_rate: float = 0.0
    spoof_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly summary for the presentation layer."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_frame(
    samples: np.ndarray,
    spectrum_db: np.ndarray,
    sample_rate: float,
) -> None:
    if samples.ndim != 1 or samples.size < 2:
        raise MalformedFrame(
            f"time-domain frame must be 1-D with >= 2 samples, got shape {samples.shape}"
        )
    if spectrum_db.ndim != 1 or spectrum_db.size != samples.size // 2:
        raise MalformedFrame(
            f"expected {samples.size // 2} frequency bins for {samples.size} samples, "
            f"got shape {spectrum_db.shape}"
        )
    if not np.all(np.isfinite(samples)):
        raise MalformedFrame("time-domain frame contains NaN or infinite samples")
    if np.any(np.isnan(spectrum_db)) or np.any(np.isposinf(spectrum_db)):
        raise MalformedFrame("frequency-domain frame contains NaN or +inf magnitudes")
    if sample_rate <= 0:
        raise MalformedFrame(f"sample rate must be positive, got {sample_rate}")


# ---------------------------------------------------------------------------
# Individual features
# ---------------------------------------------------------------------------


def root_mean_square(samples: np.ndarray) -> float:
    """Unscaled RMS of a time-domain frame."""
    return float(np.sqrt(np.mean(np.square(samples))))


def spectral_centroid(magnitudes: np.ndarray, sample_rate: float) -> float:
    """Magnitude-weighted mean frequency of linear *magnitudes*, in Hz.

    Bin ``i`` of ``B`` maps to ``i * sample_rate / (2 * B)``.  Returns 0
    when every bin is empty or at the magnitude floor.
    """
    if np.all(magnitudes <= MAGNITUDE_FLOOR * _FLOOR_TOLERANCE):
        return 0.0
    bins = magnitudes.size
    total = float(np.sum(magnitudes))
    frequencies = np.arange(bins, dtype=np.float64) * sample_rate / (2 * bins)
    return max(0.0, float(np.sum(magnitudes * frequencies)) / total)


def spectral_flatness(magnitudes: np.ndarray) -> float:
    """Geometric over arithmetic mean of linear *magnitudes*, in [0, 1]."""
    floored = np.maximum(magnitudes, MAGNITUDE_FLOOR)
    geometric = float(np.exp(np.mean(np.log(floored))))
    arithmetic = float(np.mean(floored))
    return _clamp01(geometric / arithmetic)


def zero_cross_rate(samples: np.ndarray) -> float:
    """Fraction of adjacent sample pairs that change sign."""
    prev, nxt = samples[:-1], samples[1:]
    crossings = ((prev <= 0) & (nxt > 0)) | ((prev >= 0) & (nxt < 0))
    return _clamp01(float(np.count_nonzero(crossings)) / samples.size)


def spoof_likelihood(flatness: float, centroid: float, rms: float) -> float:
    """Blend flatness, centroid position and quietness into [0, 1]."""
    flat_score = min(1.0, flatness * FLATNESS_GAIN)
    centroid_norm = min(1.0, centroid / CENTROID_REFERENCE_HZ)
    volume_score = min(1.0, rms * RMS_GAIN)
    spoof = (
        SPOOF_FLATNESS_WEIGHT * flat_score
        + SPOOF_CENTROID_WEIGHT * (1.0 - abs(centroid_norm - CENTROID_SWEET_SPOT))
        + SPOOF_QUIETNESS_WEIGHT * (1.0 - volume_score)
    )
    return _clamp01(spoof)


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def extract_features(
    samples: Any,
    spectrum_db: Any,
    sample_rate: float,
) -> FeatureSample:
    """Reduce one paired audio frame to a :class:`FeatureSample`.

    Parameters
    ----------
    samples:
        Time-domain frame, ``N`` samples in [-1, 1].
    spectrum_db:
        Frequency-domain frame, ``N // 2`` magnitudes in decibels.
        ``-inf`` is accepted for empty bins.
    sample_rate:
        Sampling rate of *samples* in Hz.

    Returns
    -------
    FeatureSample
        All fields within their documented bounds.

    Raises
    ------
    MalformedFrame
        If the buffers violate the frame contract.
    """
    time_frame = np.asarray(samples, dtype=np.float64)
    freq_frame = np.asarray(spectrum_db, dtype=np.float64)
    _validate_frame(time_frame, freq_frame, sample_rate)

    rms = root_mean_square(time_frame)
    with np.errstate(over="ignore", under="ignore"):
        magnitudes = np.power(10.0, freq_frame / 20.0)

    centroid = spectral_centroid(magnitudes, sample_rate)
    flatness = spectral_flatness(magnitudes)

    return FeatureSample(
        volume=_clamp01(rms * VOLUME_GAIN),
        spectral_centroid=centroid,
        flatness=flatness,
        zero_cross_rate=zero_cross_rate(time_frame),
        spoof_score=spoof_likelihood(flatness, centroid, rms),
    )


# ---------------------------------------------------------------------------
# SpectrumAnalyser
# ---------------------------------------------------------------------------


class SpectrumAnalyser:
    """Turn time-domain frames into smoothed dB magnitude frames.

    Mirrors the Web Audio ``AnalyserNode`` pipeline: Blackman window,
    real FFT normalised by ``fft_size``, exponential smoothing across
    frames, then conversion to decibels.  Output has ``fft_size // 2``
    bins, ready for :func:`extract_features`.

    Parameters
    ----------
    fft_size:
        Samples per frame.  Must be a power of two.
    smoothing:
        Weight of the previous frame in [0, 1).  0 disables smoothing.
    """

    def __init__(
        self,
        fft_size: int = DEFAULT_FFT_SIZE,
        smoothing: float = DEFAULT_SMOOTHING,
    ) -> None:
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError(f"smoothing must be in [0, 1), got {smoothing}")

        self.fft_size: int = fft_size
        self.smoothing: float = smoothing
        self._window: np.ndarray = np.blackman(fft_size)
        self._smoothed: np.ndarray = np.zeros(fft_size // 2, dtype=np.float64)

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def reset(self) -> None:
        """Forget the smoothing history."""
        self._smoothed.fill(0.0)

    def process(self, samples: Any) -> np.ndarray:
        """Return the dB spectrum (``fft_size // 2`` bins) for one frame.

        Raises
        ------
        MalformedFrame
            If *samples* is not a 1-D frame of exactly ``fft_size`` samples.
        """
        frame = np.asarray(samples, dtype=np.float64)
        if frame.ndim != 1 or frame.size != self.fft_size:
            raise MalformedFrame(
                f"expected {self.fft_size} samples, got shape {frame.shape}"
            )

        spectrum = np.fft.rfft(frame * self._window)[: self.bin_count]
        magnitude = np.abs(spectrum) / self.fft_size
        self._smoothed = (
            self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitude
        )
        with np.errstate(divide="ignore"):
            return 20.0 * np.log10(self._smoothed)

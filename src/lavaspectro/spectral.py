from __future__ import annotations

import numpy as np
from scipy import fft
from scipy.signal import windows

from lavaspectro.constants import BAND_WIDTH_RATIO, DB_GAIN, MIN_BAND_FREQ_HZ, POWER_EPSILON
from lavaspectro.models import PcmFormat, SpectrogramSettings

_PCM_DTYPE = np.dtype(">i2")


def decode_pcm_s16be(data: bytes) -> np.ndarray:
    """Interpret each byte pair as one signed 16-bit big-endian sample."""
    usable = len(data) - (len(data) % _PCM_DTYPE.itemsize)
    return np.frombuffer(data, dtype=_PCM_DTYPE, count=usable // _PCM_DTYPE.itemsize).astype(np.int16)


def hann_window(size: int) -> np.ndarray:
    return np.asarray(windows.hann(size, sym=True), dtype=np.float64)


def band_bin_ranges(sample_rate: int, window_size: int, band_count: int) -> tuple[np.ndarray, np.ndarray]:
    """Half-open magnitude bin ranges of the log-spaced bands.

    Band ``i`` is centred on a frequency spaced logarithmically between 20 Hz
    and Nyquist and spans up to 1.2 times that frequency. Every range holds at
    least one bin.
    """
    if band_count < 2:
        raise ValueError("band_count must be at least 2")
    mag_count = window_size // 2
    nyquist = sample_rate / 2.0
    log_min = np.log(MIN_BAND_FREQ_HZ)
    log_max = np.log(nyquist)
    positions = np.arange(band_count, dtype=np.float64) / float(band_count - 1)
    target_freqs = np.exp(log_min + (log_max - log_min) * positions)

    starts = (target_freqs * mag_count / nyquist).astype(np.int64)
    starts = np.clip(starts, 0, mag_count - 1)
    ends = (target_freqs * BAND_WIDTH_RATIO * mag_count / nyquist).astype(np.int64)
    ends = np.clip(ends, starts + 1, mag_count)
    return starts, ends


def quantize_bands(magnitudes: np.ndarray, ranges: tuple[np.ndarray, np.ndarray], window_size: int) -> np.ndarray:
    """Map magnitude rows (windows x bins) to quantized band levels (windows x bands)."""
    starts, ends = ranges
    power = np.square(np.atleast_2d(magnitudes))
    band_power = np.empty((power.shape[0], starts.size), dtype=np.float64)
    for band, (start, end) in enumerate(zip(starts, ends, strict=True)):
        band_power[:, band] = power[:, start:end].mean(axis=1)
    db = 10.0 * np.log10(band_power / float(window_size) + POWER_EPSILON)
    return np.clip(np.rint(db * DB_GAIN), 0, 255).astype(np.uint8)


class SpectralAccumulator:
    """Turns a stream of PCM chunks into spectral frames.

    Samples are collected into non-overlapping windows of ``window_size``.
    Each full window is tapered, transformed and reduced to one frame of
    ``band_count`` bytes. Samples that never fill a window are not emitted.
    """

    def __init__(self, settings: SpectrogramSettings | None = None, pcm_format: PcmFormat | None = None) -> None:
        self._settings = settings or SpectrogramSettings()
        self._format = pcm_format or PcmFormat()
        if self._settings.window_size < 2 or self._settings.window_size % 2:
            raise ValueError("window_size must be an even number of samples")
        self._window = hann_window(self._settings.window_size)
        self._ranges = band_bin_ranges(self._format.sample_rate, self._settings.window_size, self._settings.band_count)
        self._pending = np.zeros(0, dtype=np.float64)
        self._interleave_carry = np.zeros(0, dtype=np.float64)
        self._frame_count = 0

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def pending_samples(self) -> int:
        return int(self._pending.size)

    def feed(self, data: bytes) -> list[bytes]:
        return self.feed_samples(decode_pcm_s16be(data))

    def feed_samples(self, samples: np.ndarray) -> list[bytes]:
        values = np.asarray(samples, dtype=np.float64).reshape(-1)
        if self._settings.deinterleave and self._format.channels > 1:
            values = self._downmix(values)
        if values.size == 0:
            return []

        window_size = self._settings.window_size
        combined = np.concatenate([self._pending, values]) if self._pending.size else values
        window_count = combined.size // window_size
        used = window_count * window_size
        self._pending = combined[used:].copy()
        if window_count == 0:
            return []

        blocks = combined[:used].reshape(window_count, window_size) * self._window
        spectrum = fft.rfft(blocks, axis=1)
        magnitudes = np.abs(spectrum[:, : window_size // 2])
        levels = quantize_bands(magnitudes, self._ranges, window_size)
        self._frame_count += window_count
        return [row.tobytes() for row in levels]

    def _downmix(self, values: np.ndarray) -> np.ndarray:
        channels = self._format.channels
        if self._interleave_carry.size:
            values = np.concatenate([self._interleave_carry, values])
        whole = (values.size // channels) * channels
        self._interleave_carry = values[whole:].copy()
        return values[:whole].reshape(-1, channels).mean(axis=1)


def compute_spectrogram(
    samples: np.ndarray,
    sample_rate: int,
    settings: SpectrogramSettings | None = None,
    channels: int = 1,
) -> list[bytes]:
    """Spectral frames of an in-memory signal in 16-bit sample units."""
    accumulator = SpectralAccumulator(settings, PcmFormat(sample_rate=sample_rate, channels=channels))
    return accumulator.feed_samples(samples)

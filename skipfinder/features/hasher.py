from __future__ import annotations

import numpy as np

FRAME_SIZE = 2048
FRAME_HOP = 1024
BAND_COUNT = 33
MIN_FREQUENCY_HZ = 300.0
MAX_FREQUENCY_HZ = 2000.0
HASH_BITS = 32
MIN_HASH_SAMPLES = FRAME_SIZE

_BIT_WEIGHTS = (1 << np.arange(HASH_BITS, dtype=np.uint64)).astype(np.uint64)
_POPCOUNT_TABLE = np.array([bin(value).count("1") for value in range(256)], dtype=np.uint8)


def hash_window(samples: np.ndarray, sample_rate: int) -> int:
    """Summarize one window of mono PCM into a 32-bit perceptual hash.

    The window is cut into Hann-weighted FFT frames. Each frame yields 32 bits from
    the sign of the log band-energy gradient across frequency and time over 33
    log-spaced bands between 300 Hz and 2 kHz. The per-frame sub-fingerprints are
    folded into a single value with a per-bit majority vote, so small encoding
    differences flip few bits while unrelated audio lands near 16 bits apart.
    """

    signal = np.asarray(samples, dtype=np.float64)
    if signal.ndim != 1:
        raise ValueError("hash_window expects a 1-D mono sample array.")
    if len(signal) < MIN_HASH_SAMPLES:
        raise ValueError(
            f"hash window needs at least {MIN_HASH_SAMPLES} samples, got {len(signal)}."
        )

    energies = _band_energies(signal, sample_rate)
    sub_fingerprints = _sub_fingerprints(energies)
    return simhash32(sub_fingerprints)


def hash_signal(
    samples: np.ndarray,
    sample_rate: int,
    hash_period: float,
    hash_duration: float,
) -> list[tuple[float, int]]:
    """Slide a ``hash_duration`` window over the signal every ``hash_period`` seconds.

    Trailing windows shorter than ``hash_duration`` are dropped rather than padded.
    """

    window_size = int(round(hash_duration * sample_rate))
    if window_size < MIN_HASH_SAMPLES:
        raise ValueError(
            f"hash_duration {hash_duration}s is shorter than one analysis frame "
            f"({MIN_HASH_SAMPLES / sample_rate:.3f}s at {sample_rate} Hz)."
        )

    frames: list[tuple[float, int]] = []
    index = 0
    while True:
        start = int(round(index * hash_period * sample_rate))
        end = start + window_size
        if end > len(samples):
            break
        timestamp = round(index * hash_period, 6)
        frames.append((timestamp, hash_window(samples[start:end], sample_rate)))
        index += 1
    return frames


def simhash32(values: np.ndarray | list[int]) -> int:
    """Fold a sequence of 32-bit values into one by per-bit majority vote."""

    array = np.asarray(values, dtype=np.uint64)
    if array.size == 0:
        return 0
    bits = (array[:, None] >> np.arange(HASH_BITS, dtype=np.uint64)) & np.uint64(1)
    votes = bits.sum(axis=0)
    majority = votes * 2 > array.size
    return int((majority.astype(np.uint64) * _BIT_WEIGHTS).sum())


def hamming(a: int, b: int) -> int:
    return ((a ^ b) & 0xFFFFFFFF).bit_count()


def hamming_matrix(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Pairwise Hamming distances between two 1-D arrays of 32-bit hashes."""

    left = np.asarray(a, dtype=np.uint32)
    right = np.asarray(b, dtype=np.uint32)
    xor = np.bitwise_xor(left[:, None], right[None, :])
    as_bytes = xor.view(np.uint8).reshape(xor.shape + (4,))
    return _POPCOUNT_TABLE[as_bytes].sum(axis=-1, dtype=np.int32)


def _band_energies(signal: np.ndarray, sample_rate: int) -> np.ndarray:
    frame_count = 1 + (len(signal) - FRAME_SIZE) // FRAME_HOP
    offsets = np.arange(frame_count)[:, None] * FRAME_HOP + np.arange(FRAME_SIZE)[None, :]
    frames = signal[offsets] * np.hanning(FRAME_SIZE)
    power = np.abs(np.fft.rfft(frames, axis=1)) ** 2

    frequencies = np.fft.rfftfreq(FRAME_SIZE, d=1.0 / sample_rate)
    upper = min(MAX_FREQUENCY_HZ, sample_rate / 2.0)
    edges = np.geomspace(MIN_FREQUENCY_HZ, upper, BAND_COUNT + 1)
    band_index = np.digitize(frequencies, edges) - 1

    energies = np.zeros((frame_count, BAND_COUNT), dtype=np.float64)
    for band in range(BAND_COUNT):
        mask = band_index == band
        if mask.any():
            energies[:, band] = power[:, mask].sum(axis=1)
    return np.log1p(energies)


def _sub_fingerprints(energies: np.ndarray) -> np.ndarray:
    gradient = energies[:, :-1] - energies[:, 1:]
    if len(gradient) > 1:
        gradient = gradient[1:] - gradient[:-1]
    bits = (gradient > 0).astype(np.uint64)
    return (bits * _BIT_WEIGHTS).sum(axis=1)

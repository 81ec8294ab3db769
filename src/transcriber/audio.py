from __future__ import annotations

import logging
import wave
from pathlib import Path

import numpy as np

from transcriber.options import AudioProcessing
from transcriber.types import TARGET_SAMPLE_RATE

logger = logging.getLogger(__name__)

# Below this level audio counts as silent.
MIN_RMS = 1e-6


def pcm16_to_float32(raw: bytes) -> np.ndarray:
    usable = len(raw) - (len(raw) % 2)
    samples = np.frombuffer(raw[:usable], dtype="<i2")
    return samples.astype(np.float32) / 32768.0


def remove_dc_offset(samples: np.ndarray) -> np.ndarray:
    if samples.size == 0:
        return samples
    mean = float(samples.mean())
    if abs(mean) <= MIN_RMS:
        return samples
    logger.debug("Removing DC offset %.6f", mean)
    return (samples - mean).astype(np.float32)


def normalize_peak(samples: np.ndarray) -> np.ndarray:
    if samples.size == 0:
        return samples
    peak = float(np.abs(samples).max())
    if peak < MIN_RMS:
        logger.debug("Audio is silent, skipping normalization")
        return samples
    if abs(peak - 1.0) <= 0.01:
        return samples
    logger.debug("Normalizing peak amplitude %.4f", peak)
    return (samples / peak).astype(np.float32)


def db_to_linear(db: float) -> float:
    return float(10.0 ** (db / 20.0))


def _window_rms(samples: np.ndarray, window: int) -> np.ndarray:
    squared = np.concatenate(([0.0], np.cumsum(samples.astype(np.float64) ** 2)))
    sums = squared[window:] - squared[:-window]
    return np.sqrt(np.maximum(sums, 0.0) / window)


def trim_silence(
    samples: np.ndarray,
    threshold_db: float = -40.0,
    pad_ms: int = 50,
    sample_rate: int = TARGET_SAMPLE_RATE,
) -> np.ndarray:
    if samples.size == 0:
        return samples

    # 10 ms windows
    window = max(sample_rate // 100, 1)
    if samples.size < window:
        return samples

    active = np.flatnonzero(_window_rms(samples, window) > db_to_linear(threshold_db))
    if active.size == 0:
        return samples

    start = int(active[0])
    end = int(active[-1]) + window
    pad = (sample_rate * pad_ms) // 1000
    start = max(start - pad, 0)
    end = min(end + pad, samples.size)

    if start == 0 and end == samples.size:
        return samples

    logger.debug(
        "Trimmed %d ms of leading and %d ms of trailing silence",
        start * 1000 // sample_rate,
        (samples.size - end) * 1000 // sample_rate,
    )
    return samples[start:end]


def apply_processing(
    samples: np.ndarray,
    processing: AudioProcessing,
    sample_rate: int = TARGET_SAMPLE_RATE,
) -> np.ndarray:
    if processing.dc_offset_removal:
        samples = remove_dc_offset(samples)
    if processing.normalize:
        samples = normalize_peak(samples)
    if processing.trim_silence:
        samples = trim_silence(
            samples,
            threshold_db=processing.silence_threshold_db,
            pad_ms=processing.silence_pad_ms,
            sample_rate=sample_rate,
        )
    return samples


def write_wav(path: Path, samples: np.ndarray, sample_rate: int = TARGET_SAMPLE_RATE) -> Path:
    pcm = (np.clip(samples, -1.0, 1.0) * 32767.0).astype("<i2")
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm.tobytes())
    return path

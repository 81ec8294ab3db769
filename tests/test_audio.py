import wave
from pathlib import Path

import numpy as np

from transcriber.audio import (
    apply_processing,
    normalize_peak,
    pcm16_to_float32,
    remove_dc_offset,
    trim_silence,
    write_wav,
)
from transcriber.options import AudioProcessing


def test_pcm16_to_float32_scales_and_drops_odd_byte() -> None:
    samples = pcm16_to_float32(b"\x00\x80\xff\x7f\x00\x00\x01")
    assert samples.dtype == np.float32
    assert samples.tolist() == [-1.0, 32767 / 32768, 0.0]


def test_remove_dc_offset_centers_signal() -> None:
    samples = np.array([0.6, 0.4, 0.6, 0.4], dtype=np.float32)
    centered = remove_dc_offset(samples)
    assert abs(float(centered.mean())) < 1e-6
    np.testing.assert_allclose(centered, [0.1, -0.1, 0.1, -0.1], atol=1e-6)


def test_normalize_peak_scales_to_unity() -> None:
    normalized = normalize_peak(np.array([0.25, -0.5], dtype=np.float32))
    np.testing.assert_allclose(normalized, [0.5, -1.0])


def test_normalize_leaves_silence_alone() -> None:
    silent = np.zeros(10, dtype=np.float32)
    assert normalize_peak(silent) is silent


def test_trim_silence_keeps_speech_with_padding() -> None:
    rate = 16_000
    samples = np.concatenate(
        [
            np.zeros(rate, dtype=np.float32),
            np.full(rate, 0.5, dtype=np.float32),
            np.zeros(rate, dtype=np.float32),
        ]
    )
    trimmed = trim_silence(samples, threshold_db=-40.0, pad_ms=50, sample_rate=rate)
    assert int(np.count_nonzero(trimmed == 0.5)) == rate
    assert rate < trimmed.size < rate + rate // 5


def test_trim_silence_keeps_all_silent_audio() -> None:
    silent = np.zeros(16_000, dtype=np.float32)
    assert trim_silence(silent).size == silent.size


def test_apply_processing_disabled_is_identity() -> None:
    samples = np.array([0.1, 0.2], dtype=np.float32)
    assert apply_processing(samples, AudioProcessing()) is samples


def test_write_wav_produces_mono_pcm16(tmp_path: Path) -> None:
    path = write_wav(tmp_path / "out.wav", np.linspace(-1.0, 1.0, 1600, dtype=np.float32))
    with wave.open(str(path), "rb") as wf:
        assert wf.getnchannels() == 1
        assert wf.getsampwidth() == 2
        assert wf.getframerate() == 16_000
        assert wf.getnframes() == 1600

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from transcriber.adapters.base import DecodeError
from transcriber.adapters.process import ProcessTimeout, run_process
from transcriber.audio import pcm16_to_float32
from transcriber.types import AudioBuffer, DecodeTarget

logger = logging.getLogger(__name__)

MAX_AUDIO_SECONDS = 8 * 60 * 60


class FfmpegDecoder:
    def __init__(self, binary: str = "ffmpeg", timeout_seconds: float | None = None) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    async def decode(self, input_path: Path, target: DecodeTarget) -> AudioBuffer:
        if not input_path.is_file():
            raise DecodeError(f"audio file not found: {input_path}", code="file_not_found")

        cmd = [
            self.binary,
            "-nostdin",
            "-threads",
            "0",
            "-i",
            str(input_path),
            "-f",
            "s16le",
            "-ac",
            str(target.channels),
            "-acodec",
            "pcm_s16le",
            "-ar",
            str(target.sample_rate),
            "-",
        ]

        try:
            completed = await run_process(cmd, timeout=self.timeout_seconds)
        except FileNotFoundError as exc:
            raise DecodeError(f"{self.binary} not found; install ffmpeg", code="tool_missing") from exc
        except ProcessTimeout as exc:
            raise DecodeError(str(exc), code="timeout") from exc

        if completed.returncode != 0:
            stderr = completed.stderr_text.strip()
            raise DecodeError(_last_lines(stderr) or f"ffmpeg exited with status {completed.returncode}")
        if not completed.stdout:
            raise DecodeError(f"ffmpeg produced no audio for {input_path.name}", code="empty_audio")

        samples = await asyncio.to_thread(pcm16_to_float32, completed.stdout)
        audio = AudioBuffer(samples=samples, sample_rate=target.sample_rate)
        if audio.duration > MAX_AUDIO_SECONDS:
            raise DecodeError(
                f"audio is {audio.duration / 3600:.1f} hours long; the limit is {MAX_AUDIO_SECONDS // 3600} hours",
                code="too_long",
            )

        logger.info("Decoded %s: %.1fs of audio", input_path.name, audio.duration)
        return audio


def _last_lines(text: str, count: int = 5) -> str:
    return "\n".join(text.splitlines()[-count:])

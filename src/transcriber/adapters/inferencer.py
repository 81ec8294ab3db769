from __future__ import annotations

import asyncio
import json
import logging
import tempfile
from pathlib import Path
from typing import Any

from transcriber.adapters.base import InferError
from transcriber.adapters.process import ProcessTimeout, run_process
from transcriber.audio import write_wav
from transcriber.options import TranscribeOptions
from transcriber.types import AudioBuffer, RawRecognition, RawSegment, ResolvedModel, WordTiming

logger = logging.getLogger(__name__)


class WhisperCppInferencer:
    """Runs the whisper.cpp command line tool and reads back its JSON output."""

    def __init__(
        self,
        binary: str = "whisper-cli",
        *,
        threads: int | None = None,
        timeout_seconds: float | None = None,
        vad_model: Path | None = None,
    ) -> None:
        self.binary = binary
        self.threads = threads
        self.vad_model = vad_model
        self.timeout_seconds = timeout_seconds

    async def infer(
        self,
        audio: AudioBuffer,
        model: ResolvedModel,
        options: TranscribeOptions,
    ) -> RawRecognition:
        if not model.path.is_file():
            raise InferError(f"model file not found: {model.path}", code="model_missing")

        with tempfile.TemporaryDirectory(prefix="transcriber-infer-") as tmp:
            tmp_dir = Path(tmp)
            wav_path = await asyncio.to_thread(write_wav, tmp_dir / "audio.wav", audio.samples, audio.sample_rate)
            out_base = tmp_dir / "result"
            cmd = self.build_command(wav_path, out_base, model, options)

            try:
                completed = await run_process(cmd, timeout=self.timeout_seconds)
            except FileNotFoundError as exc:
                raise InferError(f"{self.binary} not found; install whisper.cpp", code="tool_missing") from exc
            except ProcessTimeout as exc:
                raise InferError(str(exc), code="timeout") from exc

            if completed.returncode != 0:
                stderr = "\n".join(completed.stderr_text.strip().splitlines()[-5:])
                raise InferError(stderr or f"{self.binary} exited with status {completed.returncode}")

            json_path = out_base.with_suffix(".json")
            if not json_path.is_file():
                raise InferError(f"{self.binary} did not write {json_path.name}")
            try:
                payload = json.loads(json_path.read_text(encoding="utf-8", errors="replace"))
            except json.JSONDecodeError as exc:
                raise InferError(f"could not parse whisper.cpp output: {exc}") from exc

        recognition = parse_whisper_json(payload, word_timestamps=options.word_timestamps)
        logger.info(
            "Recognized %d segments with model %s (language=%s)",
            len(recognition.segments),
            model.identifier,
            recognition.language or "unknown",
        )
        return recognition

    def build_command(
        self,
        wav_path: Path,
        out_base: Path,
        model: ResolvedModel,
        options: TranscribeOptions,
    ) -> list[str]:
        cmd = [
            self.binary,
            "-m",
            str(model.path),
            "-f",
            str(wav_path),
            "-oj",
            "-of",
            str(out_base),
            "-np",
            "-l",
            options.language or "auto",
            "-bs",
            str(options.beam_size or 1),
        ]
        if options.word_timestamps:
            cmd.append("-ojf")
        if options.translate:
            cmd.append("-tr")
        threads = options.threads or self.threads
        if threads:
            cmd.extend(["-t", str(threads)])
        if options.temperature:
            cmd.extend(["-tp", f"{options.temperature:g}"])
        if not options.gpu:
            cmd.append("-ng")
        elif options.gpu_device is not None:
            cmd.extend(["-dev", str(options.gpu_device)])
        if options.vad:
            # whisper-cli only runs voice activity detection with a Silero model.
            if self.vad_model is not None:
                cmd.extend(["--vad", "-vm", str(self.vad_model)])
            else:
                logger.debug("No VAD model configured; transcribing without voice activity detection")
        return cmd


def parse_whisper_json(payload: dict[str, Any], *, word_timestamps: bool = False) -> RawRecognition:
    result = payload.get("result") or {}
    language = result.get("language") if isinstance(result, dict) else None

    segments: list[RawSegment] = []
    for item in payload.get("transcription") or []:
        if not isinstance(item, dict):
            continue
        start, end = _offsets(item)
        words = _merge_tokens(item.get("tokens")) if word_timestamps else None
        segments.append(RawSegment(start=start, end=end, text=str(item.get("text") or ""), words=words))

    return RawRecognition(segments=segments, language=str(language) if language else None)


def _offsets(item: dict[str, Any]) -> tuple[float, float]:
    offsets = item.get("offsets") or {}
    return _ms_to_seconds(offsets.get("from")), _ms_to_seconds(offsets.get("to"))


def _ms_to_seconds(value: object) -> float:
    try:
        return float(str(value)) / 1000.0 if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _merge_tokens(tokens: object) -> tuple[WordTiming, ...]:
    """Join sub-word tokens into words; a leading space starts a new word."""
    if not isinstance(tokens, list):
        return ()

    words: list[WordTiming] = []
    text = ""
    start = end = 0.0
    probs: list[float] = []

    def flush() -> None:
        if text.strip():
            probability = sum(probs) / len(probs) if probs else None
            words.append(WordTiming(word=text.strip(), start=start, end=max(end, start), probability=probability))

    for token in tokens:
        if not isinstance(token, dict):
            continue
        piece = str(token.get("text") or "")
        stripped = piece.strip()
        if not stripped or stripped.startswith("[") or stripped.startswith("<"):
            continue
        token_start, token_end = _offsets(token)
        if piece.startswith(" ") or not text:
            flush()
            text, start, probs = piece, token_start, []
        else:
            text += piece
        end = token_end
        if isinstance(token.get("p"), (int, float)):
            probs.append(float(token["p"]))
    flush()
    return tuple(words)

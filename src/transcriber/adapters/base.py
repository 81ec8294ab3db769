from __future__ import annotations

from pathlib import Path
from typing import Protocol

from transcriber.options import TranscribeOptions
from transcriber.types import AudioBuffer, DecodeTarget, FetchResult, RawRecognition, ResolvedModel


class AdapterError(RuntimeError):
    """Failure reported by an external tool, with the tool's own text as message."""

    code = "adapter_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class FetchError(AdapterError):
    code = "download_failed"


class DecodeError(AdapterError):
    code = "decode_failed"


class InferError(AdapterError):
    code = "infer_failed"


class Fetcher(Protocol):
    async def fetch(self, url: str, dest_dir: Path) -> FetchResult:
        ...


class Decoder(Protocol):
    async def decode(self, input_path: Path, target: DecodeTarget) -> AudioBuffer:
        ...


class Inferencer(Protocol):
    async def infer(
        self,
        audio: AudioBuffer,
        model: ResolvedModel,
        options: TranscribeOptions,
    ) -> RawRecognition:
        ...

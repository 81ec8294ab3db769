"""Module-level entry points backed by a lazily created :class:`Transcriber`.

>>> transcript = asyncio.run(transcribe("https://example.com/talk"))
>>> print(transcript.to_srt())
"""

from __future__ import annotations

import atexit
from pathlib import Path

from transcriber.languages import supported_languages
from transcriber.options import TranscribeOptions
from transcriber.runtime import Transcriber
from transcriber.types import MediaSource, ModelInfo, ResolvedModel, Transcript

__all__ = [
    "default_transcriber",
    "download_model",
    "list_models",
    "supported_languages",
    "transcribe",
    "transcribe_with_options",
]

_default: Transcriber | None = None


def default_transcriber() -> Transcriber:
    global _default
    if _default is None:
        _default = Transcriber()
        atexit.register(_default.close)
    return _default


async def transcribe(source: str | Path | MediaSource) -> Transcript:
    return await default_transcriber().transcribe(source)


async def transcribe_with_options(source: str | Path | MediaSource, options: TranscribeOptions) -> Transcript:
    return await default_transcriber().transcribe(source, options)


def list_models() -> list[ModelInfo]:
    return default_transcriber().list_models()


async def download_model(identifier: str) -> ResolvedModel:
    return await default_transcriber().download_model(identifier)

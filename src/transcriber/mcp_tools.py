from __future__ import annotations

import logging
from typing import Any

from fastmcp import FastMCP
from mcp.types import ToolAnnotations

from transcriber.errors import TranscriberError
from transcriber.languages import supported_languages
from transcriber.render import RENDERERS
from transcriber.runtime import Transcriber

logger = logging.getLogger(__name__)


def _error(exc: TranscriberError) -> dict[str, Any]:
    return {"error": exc.code, "message": exc.message, "retryable": exc.retryable}


class ToolRegistry:
    def __init__(self, runtime: Transcriber) -> None:
        self.runtime = runtime

    def register(self, mcp: FastMCP) -> None:
        _ro = ToolAnnotations(readOnlyHint=True)

        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=True, openWorldHint=True))
        async def transcribe(
            source: str,
            format: str = "text",
            model: str | None = None,
            language: str | None = None,
            translate: bool = False,
            word_timestamps: bool = False,
            beam_size: int | None = None,
        ) -> dict[str, Any]:
            """Transcribe a media URL or a local audio/video file.

            Args:
                source: http(s) URL of a page yt-dlp understands, or a local file path
                format: Output format - "text", "srt", "vtt", "json" or "markdown" (default: "text")
                model: Whisper model name, e.g. "base" or "large-v3-turbo"
                language: Language code or name; omit to auto-detect
                translate: Translate the speech to English
                word_timestamps: Include per-word timings (json output)
                beam_size: Beam search width 1-16; omit for greedy decoding

            Returns:
                The rendered transcript with language, duration and model.
            """
            if format not in RENDERERS:
                return {"error": "unsupported_format", "supported_formats": sorted(RENDERERS)}

            try:
                builder = self.runtime.options()
                if model:
                    builder.model(model)
                options = (
                    builder.language(language)
                    .translate(translate)
                    .word_timestamps(word_timestamps)
                    .beam_size(beam_size)
                    .build()
                )
                transcript = await self.runtime.transcribe(source, options)
            except TranscriberError as exc:
                logger.warning("transcribe failed for %s: %s", source, exc)
                return _error(exc)

            return {
                "source": source,
                "format": format,
                "language": transcript.language,
                "duration": transcript.duration,
                "model": transcript.model,
                "title": transcript.source_title,
                "segments": len(transcript.segments),
                "content": transcript.render(format),  # type: ignore[arg-type]
            }

        @mcp.tool(annotations=_ro)
        def list_models() -> dict[str, Any]:
            models = self.runtime.list_models()
            return {
                "count": len(models),
                "models": [info.to_dict() for info in models],
            }

        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=True, openWorldHint=True))
        async def download_model(identifier: str) -> dict[str, Any]:
            """Download a catalog model into the local cache ahead of time.

            Args:
                identifier: Model name as shown by list_models
            """
            try:
                resolved = await self.runtime.download_model(identifier)
            except TranscriberError as exc:
                return _error(exc)
            return {
                "identifier": resolved.identifier,
                "path": str(resolved.path),
                "size": resolved.size,
                "checksum": resolved.checksum,
            }

        @mcp.tool(annotations=_ro)
        def list_languages() -> dict[str, Any]:
            languages = supported_languages()
            return {
                "count": len(languages),
                "languages": [{"code": code, "name": name} for code, name in languages],
            }

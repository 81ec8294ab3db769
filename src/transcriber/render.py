"""Deterministic serializers over an already-built transcript.

Nothing here touches the filesystem, the network or the inference engine.
"""

from __future__ import annotations

import json
import math
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from transcriber.types import OutputFormat, Transcript


def _to_millis(seconds: float) -> int:
    return max(0, int(math.floor(seconds * 1000.0 + 0.5)))


def format_timestamp(seconds: float, *, separator: str = ",") -> str:
    hours, rem = divmod(_to_millis(seconds), 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1_000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{millis:03d}"


def _format_clock(seconds: float) -> str:
    whole = int(max(seconds, 0))
    hours, rem = divmod(whole, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def _format_duration(seconds: float | None) -> str | None:
    if not seconds:
        return None
    whole = int(max(seconds, 0))
    hours, rem = divmod(whole, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def to_text(transcript: Transcript) -> str:
    return " ".join(text for text in (seg.text.strip() for seg in transcript.segments) if text)


def to_srt(transcript: Transcript) -> str:
    cues: list[str] = []
    for index, segment in enumerate(transcript.segments, start=1):
        start = format_timestamp(segment.start, separator=",")
        end = format_timestamp(segment.end, separator=",")
        cues.append(f"{index}\n{start} --> {end}\n{segment.text.strip()}\n\n")
    return "".join(cues)


def to_vtt(transcript: Transcript) -> str:
    cues = ["WEBVTT\n\n"]
    for segment in transcript.segments:
        start = format_timestamp(segment.start, separator=".")
        end = format_timestamp(segment.end, separator=".")
        cues.append(f"{start} --> {end}\n{segment.text.strip()}\n\n")
    return "".join(cues)


def to_json(transcript: Transcript) -> str:
    return json.dumps(transcript.to_dict(), ensure_ascii=False)


def to_json_pretty(transcript: Transcript) -> str:
    return json.dumps(transcript.to_dict(), ensure_ascii=False, indent=2)


def to_markdown(transcript: Transcript) -> str:
    lines: list[str] = []

    if transcript.source_title:
        lines.append(f"# {transcript.source_title}")
        lines.append("")

    meta_lines: list[str] = []
    if transcript.source_url:
        meta_lines.append(f"**Source**: {transcript.source_url}")
    if transcript.language:
        meta_lines.append(f"**Language**: {transcript.language}")
    duration = _format_duration(transcript.duration)
    if duration:
        meta_lines.append(f"**Duration**: {duration}")
    if transcript.model:
        meta_lines.append(f"**Model**: {transcript.model}")

    if meta_lines:
        lines.extend(meta_lines)
        lines.append("")
        lines.append("---")
        lines.append("")

    lines.append("## Transcript")
    lines.append("")

    for segment in transcript.segments:
        text = segment.text.strip()
        if text:
            lines.append(f"- [{_format_clock(segment.start)}] {text}")

    return "\n".join(lines).strip() + "\n"


RENDERERS: dict[str, Callable[[Transcript], str]] = {
    "text": to_text,
    "srt": to_srt,
    "vtt": to_vtt,
    "json": to_json_pretty,
    "markdown": to_markdown,
}


def render(transcript: Transcript, fmt: OutputFormat) -> str:
    renderer = RENDERERS.get(fmt)
    if renderer is None:
        raise ValueError(f"unsupported format {fmt!r}; expected one of {sorted(RENDERERS)}")
    return renderer(transcript)

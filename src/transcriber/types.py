from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Union
from urllib.parse import urlparse

import numpy as np

from transcriber import render
from transcriber.utils.url import is_remote_url

OutputFormat = Literal["text", "srt", "vtt", "json", "markdown"]

TARGET_SAMPLE_RATE = 16_000

# Half a millisecond: the resolution every renderer rounds to.
OVERLAP_TOLERANCE = 0.0005


@dataclass(frozen=True, slots=True)
class RemoteUrl:
    url: str


@dataclass(frozen=True, slots=True)
class LocalPath:
    path: Path


MediaSource = Union[RemoteUrl, LocalPath]


def parse_source(value: str | Path | RemoteUrl | LocalPath) -> MediaSource:
    if isinstance(value, (RemoteUrl, LocalPath)):
        return value
    if isinstance(value, Path):
        return LocalPath(value)
    text = value.strip()
    if is_remote_url(text):
        return RemoteUrl(text)
    return LocalPath(Path(text).expanduser())


class Backend(str, Enum):
    CPU = "cpu"
    GPU = "gpu"


def split_checksum(checksum: str) -> tuple[str, str]:
    """Split ``"sha1:abc..."`` into ``("sha1", "abc...")``; bare digests are sha256."""
    algorithm, sep, digest = checksum.strip().partition(":")
    if not sep:
        algorithm, digest = "sha256", algorithm
    algorithm = algorithm.lower()
    if algorithm not in hashlib.algorithms_available:
        raise ValueError(f"unknown checksum algorithm: {algorithm}")
    return algorithm, digest.lower()


@dataclass(frozen=True, slots=True)
class ModelSpec:
    identifier: str
    backend: Backend = Backend.CPU
    path: Path | None = None
    url: str | None = None
    checksum: str | None = None

    @classmethod
    def named(cls, identifier: str, backend: Backend = Backend.CPU) -> ModelSpec:
        return cls(identifier=identifier.strip().lower(), backend=backend)

    @classmethod
    def custom(
        cls,
        location: str | Path,
        checksum: str,
        *,
        identifier: str | None = None,
        backend: Backend = Backend.CPU,
    ) -> ModelSpec:
        if isinstance(location, str) and is_remote_url(location):
            name = identifier or Path(urlparse(location).path).stem or "custom"
            return cls(identifier=name, backend=backend, url=location.strip(), checksum=checksum)
        path = Path(location).expanduser()
        return cls(identifier=identifier or path.stem, backend=backend, path=path, checksum=checksum)

    @property
    def is_custom(self) -> bool:
        return self.path is not None or self.url is not None

    @property
    def cache_key(self) -> str:
        if self.is_custom and self.checksum:
            _, digest = split_checksum(self.checksum)
            return f"custom-{digest[:16]}"
        return self.identifier


@dataclass(frozen=True, slots=True)
class ResolvedModel:
    identifier: str
    path: Path
    checksum: str
    backend: Backend = Backend.CPU
    size: int = 0


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    identifier: str
    path: Path
    checksum: str
    size: int
    verified_at: datetime
    source: str | None = None
    custom: bool = False


@dataclass(frozen=True, slots=True)
class ModelInfo:
    identifier: str
    size_label: str | None
    cached: bool
    custom: bool = False
    english_only: bool = False
    path: Path | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "identifier": self.identifier,
            "size": self.size_label,
            "cached": self.cached,
            "custom": self.custom,
            "english_only": self.english_only,
            "path": str(self.path) if self.path else None,
        }


@dataclass(frozen=True, slots=True)
class AudioBuffer:
    samples: np.ndarray
    sample_rate: int = TARGET_SAMPLE_RATE

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / float(self.sample_rate)


@dataclass(frozen=True, slots=True)
class DecodeTarget:
    sample_rate: int = TARGET_SAMPLE_RATE
    channels: int = 1
    sample_format: str = "f32"


TARGET = DecodeTarget()


@dataclass(slots=True)
class FetchResult:
    audio_path: Path
    metadata: dict[str, object] = field(default_factory=dict)

    @property
    def title(self) -> str | None:
        value = self.metadata.get("title")
        return str(value) if value else None


@dataclass(frozen=True, slots=True)
class WordTiming:
    word: str
    start: float
    end: float
    probability: float | None = None


@dataclass(frozen=True, slots=True)
class RawSegment:
    start: float
    end: float
    text: str
    words: tuple[WordTiming, ...] | None = None


@dataclass(slots=True)
class RawRecognition:
    segments: list[RawSegment]
    language: str | None = None


@dataclass(frozen=True, slots=True)
class Segment:
    start: float
    end: float
    text: str
    words: tuple[WordTiming, ...] | None = None

    def __post_init__(self) -> None:
        if not (math.isfinite(self.start) and math.isfinite(self.end)):
            raise ValueError(f"segment times must be finite, got {self.start}..{self.end}")
        if self.start < 0:
            raise ValueError(f"segment start must be >= 0, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"segment end {self.end} precedes start {self.start}")
        if self.words is not None and not isinstance(self.words, tuple):
            object.__setattr__(self, "words", tuple(self.words))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"start": self.start, "end": self.end, "text": self.text}
        if self.words is not None:
            payload["words"] = [
                {"word": w.word, "start": w.start, "end": w.end, "probability": w.probability}
                for w in self.words
            ]
        return payload


@dataclass(frozen=True, slots=True)
class Transcript:
    segments: tuple[Segment, ...]
    language: str
    duration: float = 0.0
    model: str | None = None
    source_url: str | None = None
    source_title: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.segments, tuple):
            object.__setattr__(self, "segments", tuple(self.segments))
        for previous, current in zip(self.segments, self.segments[1:]):
            if current.start + OVERLAP_TOLERANCE < previous.end:
                raise ValueError(
                    f"segments overlap: {previous.start}-{previous.end} and {current.start}-{current.end}"
                )

    @property
    def text(self) -> str:
        return render.to_text(self)

    def to_text(self) -> str:
        return render.to_text(self)

    def to_srt(self) -> str:
        return render.to_srt(self)

    def to_vtt(self) -> str:
        return render.to_vtt(self)

    def to_json(self) -> str:
        return render.to_json(self)

    def to_json_pretty(self) -> str:
        return render.to_json_pretty(self)

    def to_markdown(self) -> str:
        return render.to_markdown(self)

    def render(self, fmt: OutputFormat) -> str:
        return render.render(self, fmt)

    def to_dict(self) -> dict[str, Any]:
        return {
            "language": self.language,
            "duration": self.duration,
            "model": self.model,
            "source_url": self.source_url,
            "source_title": self.source_title,
            "segments": [segment.to_dict() for segment in self.segments],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Transcript:
        segments = []
        for item in payload.get("segments") or []:
            words = item.get("words")
            segments.append(
                Segment(
                    start=float(item["start"]),
                    end=float(item["end"]),
                    text=str(item.get("text") or ""),
                    words=None
                    if words is None
                    else tuple(
                        WordTiming(
                            word=str(w["word"]),
                            start=float(w["start"]),
                            end=float(w["end"]),
                            probability=w.get("probability"),
                        )
                        for w in words
                    ),
                )
            )
        return cls(
            segments=tuple(segments),
            language=str(payload.get("language") or "unknown"),
            duration=float(payload.get("duration") or 0.0),
            model=payload.get("model"),
            source_url=payload.get("source_url"),
            source_title=payload.get("source_title"),
        )

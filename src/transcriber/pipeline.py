"""The transcription pipeline: fetch, decode, resolve model, infer, assemble.

Stages run strictly in order and each stage's output is fully materialized
before the next begins. Adapter failures are wrapped into the matching
:class:`~transcriber.errors.PipelineError` subclass with the tool's message as
``cause``; registry errors pass through unchanged. Remote sources get a
private scratch directory that is removed however the run ends.
"""

from __future__ import annotations

import asyncio
import logging
import math
import shutil
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path

from transcriber.adapters.base import DecodeError, Decoder, Fetcher, FetchError, InferError, Inferencer
from transcriber.audio import apply_processing
from transcriber.errors import Cancelled, DecodeFailed, FetchFailed, InferFailed
from transcriber.options import TranscribeOptions
from transcriber.registry import ModelRegistry
from transcriber.types import (
    TARGET,
    AudioBuffer,
    LocalPath,
    MediaSource,
    RawRecognition,
    RemoteUrl,
    Segment,
    Transcript,
)

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    PENDING = "pending"
    FETCH = "fetch"
    DECODE = "decode"
    RESOLVE_MODEL = "resolve_model"
    INFER = "infer"
    DONE = "done"


class _RunState:
    __slots__ = ("stage",)

    def __init__(self) -> None:
        self.stage = Stage.PENDING


class PipelineRun:
    """Handle to a pipeline run started with :meth:`Pipeline.start`."""

    def __init__(self, task: asyncio.Task[Transcript], state: _RunState) -> None:
        self._task = task
        self._state = state

    @property
    def stage(self) -> Stage:
        return self._state.stage

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        return self._task.cancel()

    async def result(self) -> Transcript:
        try:
            return await self._task
        except Cancelled:
            raise
        except asyncio.CancelledError as exc:
            if self._task.cancelled():
                raise Cancelled(self._state.stage.value) from exc
            raise


class Pipeline:
    def __init__(
        self,
        *,
        fetcher: Fetcher,
        decoder: Decoder,
        inferencer: Inferencer,
        registry: ModelRegistry,
        work_root: Path | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.decoder = decoder
        self.inferencer = inferencer
        self.registry = registry
        self.work_root = work_root

    async def run(self, source: MediaSource, options: TranscribeOptions) -> Transcript:
        return await self._run(source, options, _RunState())

    def start(self, source: MediaSource, options: TranscribeOptions) -> PipelineRun:
        state = _RunState()
        task = asyncio.get_running_loop().create_task(self._run(source, options, state), name="transcribe")
        return PipelineRun(task, state)

    async def _run(self, source: MediaSource, options: TranscribeOptions, state: _RunState) -> Transcript:
        scratch: Path | None = None
        started = time.monotonic()
        try:
            source_url: str | None = None
            source_title: str | None = None

            if isinstance(source, RemoteUrl):
                scratch = self._make_scratch_dir()
                state.stage = Stage.FETCH
                with _timed(Stage.FETCH):
                    try:
                        fetched = await self.fetcher.fetch(source.url, scratch)
                    except (FetchError, OSError) as exc:
                        raise FetchFailed(f"could not fetch {source.url}", cause=str(exc)) from exc
                audio_path = fetched.audio_path
                source_url = source.url
                source_title = fetched.title
            elif isinstance(source, LocalPath):
                audio_path = source.path
                source_title = source.path.name
            else:
                raise TypeError(f"unsupported media source: {source!r}")

            state.stage = Stage.DECODE
            with _timed(Stage.DECODE):
                try:
                    audio = await self.decoder.decode(audio_path, TARGET)
                except (DecodeError, OSError) as exc:
                    raise DecodeFailed(f"could not decode {audio_path.name}", cause=str(exc)) from exc
                duration = audio.duration
                if options.audio_processing.enabled:
                    samples = await asyncio.to_thread(
                        apply_processing, audio.samples, options.audio_processing, audio.sample_rate
                    )
                    audio = AudioBuffer(samples=samples, sample_rate=audio.sample_rate)

            state.stage = Stage.RESOLVE_MODEL
            with _timed(Stage.RESOLVE_MODEL):
                model = await self.registry.resolve(options.model)

            state.stage = Stage.INFER
            with _timed(Stage.INFER):
                try:
                    raw = await self.inferencer.infer(audio, model, options)
                except InferError as exc:
                    raise InferFailed(f"inference failed with model {model.identifier}", cause=str(exc)) from exc

            transcript = build_transcript(
                raw,
                requested_language=options.language,
                duration=duration,
                model=model.identifier,
                source_url=source_url,
                source_title=source_title,
            )
            state.stage = Stage.DONE
            logger.info(
                "Transcribed %s: %d segments in %.2fs",
                source_url or audio_path.name,
                len(transcript.segments),
                time.monotonic() - started,
            )
            return transcript
        except Cancelled:
            raise
        except asyncio.CancelledError as exc:
            logger.info("Pipeline cancelled during %s", state.stage.value)
            raise Cancelled(state.stage.value) from exc
        finally:
            if scratch is not None:
                shutil.rmtree(scratch, ignore_errors=True)

    def _make_scratch_dir(self) -> Path:
        if self.work_root is not None:
            self.work_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="run-", dir=self.work_root))


@contextmanager
def _timed(stage: Stage) -> Iterator[None]:
    started = time.monotonic()
    logger.info("Stage %s started", stage.value)
    try:
        yield
    except BaseException:
        logger.info("Stage %s stopped after %.2fs", stage.value, time.monotonic() - started)
        raise
    logger.info("Stage %s finished in %.2fs", stage.value, time.monotonic() - started)


def build_transcript(
    raw: RawRecognition,
    *,
    requested_language: str | None = None,
    duration: float = 0.0,
    model: str | None = None,
    source_url: str | None = None,
    source_title: str | None = None,
) -> Transcript:
    """Turn engine output into a valid Transcript.

    Whitespace-only segments and segments with non-finite times are dropped.
    Times are clamped to zero, a segment that starts before its predecessor
    ends is moved forward to that end, and an end earlier than its start is
    raised to the start.
    """
    segments: list[Segment] = []
    previous_end = 0.0
    for item in raw.segments:
        text = item.text.strip()
        if not text or not (math.isfinite(item.start) and math.isfinite(item.end)):
            continue
        start = max(item.start, 0.0, previous_end)
        end = max(item.end, start)
        segments.append(Segment(start=start, end=end, text=text, words=item.words))
        previous_end = end

    language = raw.language or requested_language or "unknown"
    return Transcript(
        segments=tuple(segments),
        language=language,
        duration=duration,
        model=model,
        source_url=source_url,
        source_title=source_title,
    )

import asyncio
import math
import threading
from pathlib import Path

import numpy as np
import pytest

from transcriber import pipeline as pipeline_module
from transcriber.adapters.base import DecodeError, FetchError, InferError
from transcriber.audio import apply_processing
from transcriber.errors import Cancelled, DecodeFailed, FetchFailed, InferFailed, UnsupportedModel
from transcriber.options import AudioProcessing, TranscribeOptions
from transcriber.pipeline import Pipeline, Stage, build_transcript
from transcriber.types import (
    AudioBuffer,
    FetchResult,
    LocalPath,
    ModelSpec,
    RawRecognition,
    RawSegment,
    RemoteUrl,
    ResolvedModel,
)


class FakeFetcher:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[str] = []
        self.dest_dirs: list[Path] = []

    async def fetch(self, url: str, dest_dir: Path) -> FetchResult:
        self.calls.append(url)
        self.dest_dirs.append(dest_dir)
        audio_path = dest_dir / "clip.wav"
        audio_path.write_bytes(b"fake-audio")
        if self.error is not None:
            raise self.error
        return FetchResult(audio_path=audio_path, metadata={"id": "clip", "title": "A Clip", "duration": 2})


class FakeDecoder:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[Path] = []

    async def decode(self, input_path: Path, target) -> AudioBuffer:
        self.calls.append(input_path)
        if self.error is not None:
            raise self.error
        return AudioBuffer(samples=np.zeros(32_000, dtype=np.float32), sample_rate=target.sample_rate)


class FakeRegistry:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[ModelSpec] = []

    async def resolve(self, spec: ModelSpec) -> ResolvedModel:
        self.calls.append(spec)
        if self.error is not None:
            raise self.error
        return ResolvedModel(identifier=spec.identifier, path=Path("/models/ggml-base.bin"), checksum="sha1:00")


class FakeInferencer:
    def __init__(
        self,
        segments: list[RawSegment] | None = None,
        language: str | None = "en",
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.segments = segments if segments is not None else [RawSegment(0.0, 1.0, " hello world")]
        self.language = language
        self.error = error
        self.gate = gate
        self.started: asyncio.Event | None = None
        self.calls: list[AudioBuffer] = []

    async def infer(self, audio: AudioBuffer, model: ResolvedModel, options: TranscribeOptions) -> RawRecognition:
        self.calls.append(audio)
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return RawRecognition(segments=list(self.segments), language=self.language)


def _pipeline(tmp_path: Path, **overrides) -> Pipeline:
    parts = {
        "fetcher": FakeFetcher(),
        "decoder": FakeDecoder(),
        "inferencer": FakeInferencer(),
        "registry": FakeRegistry(),
    }
    parts.update(overrides)
    return Pipeline(work_root=tmp_path / "work", **parts)  # type: ignore[arg-type]


def _local_file(tmp_path: Path) -> Path:
    path = tmp_path / "talk.mp3"
    path.write_bytes(b"fake-mp3")
    return path


def test_local_source_skips_fetcher(tmp_path: Path) -> None:
    pipeline = _pipeline(tmp_path)
    audio_path = _local_file(tmp_path)

    transcript = asyncio.run(pipeline.run(LocalPath(audio_path), TranscribeOptions()))

    assert pipeline.fetcher.calls == []
    assert pipeline.decoder.calls == [audio_path]
    assert transcript.text == "hello world"
    assert transcript.language == "en"
    assert transcript.duration == 2.0
    assert transcript.model == "base"
    assert transcript.source_url is None
    assert transcript.source_title == "talk.mp3"
    assert not (tmp_path / "work").exists() or not any((tmp_path / "work").iterdir())


def test_remote_source_fetches_and_cleans_scratch(tmp_path: Path) -> None:
    pipeline = _pipeline(tmp_path)

    transcript = asyncio.run(pipeline.run(RemoteUrl("https://example.com/v/1"), TranscribeOptions()))

    assert pipeline.fetcher.calls == ["https://example.com/v/1"]
    scratch = pipeline.fetcher.dest_dirs[0]
    assert scratch.parent == tmp_path / "work"
    assert not scratch.exists()
    assert pipeline.decoder.calls == [scratch / "clip.wav"]
    assert transcript.source_url == "https://example.com/v/1"
    assert transcript.source_title == "A Clip"


def test_fetch_error_becomes_fetch_failed(tmp_path: Path) -> None:
    pipeline = _pipeline(tmp_path, fetcher=FakeFetcher(error=FetchError("HTTP Error 404", code="download_failed")))

    with pytest.raises(FetchFailed) as excinfo:
        asyncio.run(pipeline.run(RemoteUrl("https://example.com/missing"), TranscribeOptions()))

    assert excinfo.value.cause == "HTTP Error 404"
    assert excinfo.value.retryable
    assert pipeline.decoder.calls == []
    assert not pipeline.fetcher.dest_dirs[0].exists()


def test_decode_error_becomes_decode_failed(tmp_path: Path) -> None:
    pipeline = _pipeline(tmp_path, decoder=FakeDecoder(error=DecodeError("Invalid data found")))

    with pytest.raises(DecodeFailed) as excinfo:
        asyncio.run(pipeline.run(LocalPath(_local_file(tmp_path)), TranscribeOptions()))

    assert excinfo.value.cause == "Invalid data found"
    assert excinfo.value.category == "input"
    assert pipeline.registry.calls == []


def test_registry_errors_propagate_unchanged(tmp_path: Path) -> None:
    error = UnsupportedModel("mystery")
    pipeline = _pipeline(tmp_path, registry=FakeRegistry(error=error))

    with pytest.raises(UnsupportedModel) as excinfo:
        asyncio.run(pipeline.run(LocalPath(_local_file(tmp_path)), TranscribeOptions()))

    assert excinfo.value is error
    assert pipeline.inferencer.calls == []


def test_infer_error_becomes_infer_failed(tmp_path: Path) -> None:
    pipeline = _pipeline(tmp_path, inferencer=FakeInferencer(error=InferError("whisper crashed")))

    with pytest.raises(InferFailed) as excinfo:
        asyncio.run(pipeline.run(RemoteUrl("https://example.com/v/2"), TranscribeOptions()))

    assert excinfo.value.cause == "whisper crashed"
    assert not pipeline.fetcher.dest_dirs[0].exists()


def test_audio_processing_runs_before_inference(tmp_path: Path) -> None:
    pipeline = _pipeline(tmp_path)
    options = TranscribeOptions(audio_processing=AudioProcessing(trim_silence=True))

    transcript = asyncio.run(pipeline.run(LocalPath(_local_file(tmp_path)), options))

    # Fully silent audio is left untouched; duration reports the decoded length.
    assert pipeline.inferencer.calls[0].samples.size == 32_000
    assert transcript.duration == 2.0


def test_audio_processing_runs_off_the_event_loop(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    threads: list[int] = []

    def recording_processing(samples, processing, sample_rate):
        threads.append(threading.get_ident())
        return apply_processing(samples, processing, sample_rate)

    monkeypatch.setattr(pipeline_module, "apply_processing", recording_processing)
    pipeline = _pipeline(tmp_path)
    options = TranscribeOptions(audio_processing=AudioProcessing(normalize=True))

    async def scenario() -> int:
        await pipeline.run(LocalPath(_local_file(tmp_path)), options)
        return threading.get_ident()

    loop_thread = asyncio.run(scenario())
    assert threads and threads[0] != loop_thread


def test_cancellation_stops_run_and_removes_scratch(tmp_path: Path) -> None:
    inferencer = FakeInferencer()
    pipeline = _pipeline(tmp_path, inferencer=inferencer)

    async def scenario() -> None:
        inferencer.gate = asyncio.Event()
        inferencer.started = asyncio.Event()
        run = pipeline.start(RemoteUrl("https://example.com/long"), TranscribeOptions())
        await inferencer.started.wait()
        assert run.stage is Stage.INFER
        assert pipeline.fetcher.dest_dirs[0].exists()

        run.cancel()
        with pytest.raises(Cancelled) as excinfo:
            await run.result()
        assert excinfo.value.stage == "infer"
        assert run.done()

    asyncio.run(scenario())
    assert not pipeline.fetcher.dest_dirs[0].exists()


class BlockingFetcher:
    """Leaves a partial download behind, then waits until cancelled."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.dest_dirs: list[Path] = []

    async def fetch(self, url: str, dest_dir: Path) -> FetchResult:
        self.dest_dirs.append(dest_dir)
        (dest_dir / "clip.webm.part").write_bytes(b"half-a-file")
        self.started.set()
        await asyncio.Event().wait()
        raise AssertionError("fetch was not cancelled")


def test_cancellation_mid_fetch_leaves_no_temporary_files(tmp_path: Path) -> None:
    pipeline = _pipeline(tmp_path)

    async def scenario() -> None:
        fetcher = BlockingFetcher()
        pipeline.fetcher = fetcher
        run = pipeline.start(RemoteUrl("https://example.com/long"), TranscribeOptions())
        await fetcher.started.wait()
        assert run.stage is Stage.FETCH
        assert (fetcher.dest_dirs[0] / "clip.webm.part").exists()

        run.cancel()
        with pytest.raises(Cancelled) as excinfo:
            await run.result()
        assert excinfo.value.stage == "fetch"

    asyncio.run(scenario())
    assert pipeline.decoder.calls == []
    assert list((tmp_path / "work").iterdir()) == []


def test_cancelled_is_not_an_exception() -> None:
    assert not issubclass(Cancelled, Exception)
    assert issubclass(Cancelled, asyncio.CancelledError)


def test_build_transcript_normalizes_segments() -> None:
    raw = RawRecognition(
        segments=[
            RawSegment(-0.5, 1.0, " first "),
            RawSegment(0.8, 2.0, "second"),
            RawSegment(2.0, 1.5, "third"),
            RawSegment(3.0, 4.0, "   "),
            RawSegment(math.nan, 5.0, "garbled"),
            RawSegment(4.0, math.inf, "runaway"),
        ],
        language=None,
    )

    transcript = build_transcript(raw, requested_language="de")

    assert [(s.start, s.end, s.text) for s in transcript.segments] == [
        (0.0, 1.0, "first"),
        (1.0, 2.0, "second"),
        (2.0, 2.0, "third"),
    ]
    assert transcript.language == "de"
    assert build_transcript(RawRecognition(segments=[])).language == "unknown"

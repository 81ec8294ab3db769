import asyncio
from pathlib import Path
from typing import Any

import numpy as np

from transcriber.config import Settings
from transcriber.mcp_tools import ToolRegistry
from transcriber.runtime import Transcriber
from transcriber.types import AudioBuffer, ModelSpec, RawRecognition, RawSegment, ResolvedModel


class DummyMCP:
    def __init__(self) -> None:
        self.tools: dict[str, Any] = {}

    def tool(self, fn: Any = None, **_: Any) -> Any:
        if fn is None:
            return self.tool
        self.tools[fn.__name__] = fn
        return fn


class FakeDecoder:
    async def decode(self, input_path: Path, target) -> AudioBuffer:
        return AudioBuffer(samples=np.zeros(16_000, dtype=np.float32), sample_rate=target.sample_rate)


class FakeInferencer:
    async def infer(self, audio, model, options) -> RawRecognition:
        return RawRecognition(segments=[RawSegment(0.0, 1.25, " Bonjour.")], language="fr")


class FakeRegistry:
    async def resolve(self, spec: ModelSpec) -> ResolvedModel:
        return ResolvedModel(identifier=spec.identifier, path=Path("/models/ggml-small.bin"), checksum="sha1:00")


def _tools(settings: Settings) -> tuple[Transcriber, dict[str, Any]]:
    runtime = Transcriber(settings, decoder=FakeDecoder(), inferencer=FakeInferencer())
    runtime.pipeline.registry = FakeRegistry()  # type: ignore[assignment]
    mcp = DummyMCP()
    ToolRegistry(runtime).register(mcp)  # type: ignore[arg-type]
    return runtime, mcp.tools


def test_registers_expected_tools(settings: Settings) -> None:
    runtime, tools = _tools(settings)
    assert set(tools) == {"transcribe", "list_models", "download_model", "list_languages"}
    runtime.close()


def test_transcribe_tool_renders_requested_format(settings: Settings, tmp_path: Path) -> None:
    media = tmp_path / "talk.mp3"
    media.write_bytes(b"ID3")
    runtime, tools = _tools(settings)

    response = asyncio.run(tools["transcribe"](str(media), format="srt", model="small"))
    runtime.close()

    assert response["language"] == "fr"
    assert response["model"] == "small"
    assert response["segments"] == 1
    assert response["content"] == "1\n00:00:00,000 --> 00:00:01,250\nBonjour.\n\n"


def test_transcribe_tool_returns_error_for_bad_options(settings: Settings) -> None:
    runtime, tools = _tools(settings)

    bad_model = asyncio.run(tools["transcribe"]("https://example.com/v", model="enormous"))
    bad_format = asyncio.run(tools["transcribe"]("https://example.com/v", format="docx"))
    runtime.close()

    assert bad_model["error"] == "invalid_options"
    assert bad_model["retryable"] is False
    assert bad_format["error"] == "unsupported_format"


def test_list_tools(settings: Settings) -> None:
    runtime, tools = _tools(settings)

    models = tools["list_models"]()
    languages = tools["list_languages"]()
    unknown = asyncio.run(tools["download_model"]("enormous"))
    runtime.close()

    assert models["count"] == 12
    assert all(item["cached"] is False for item in models["models"])
    assert {"code": "en", "name": "english"} in languages["languages"]
    assert unknown["error"] == "unsupported_model"

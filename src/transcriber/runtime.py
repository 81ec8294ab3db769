from __future__ import annotations

import logging
from pathlib import Path

import httpx

from transcriber.adapters.base import Decoder, Fetcher, Inferencer
from transcriber.adapters.decoder import FfmpegDecoder
from transcriber.adapters.fetcher import YtDlpFetcher
from transcriber.adapters.inferencer import WhisperCppInferencer
from transcriber.config import Settings, load_settings
from transcriber.db.cache_index import CacheIndexRepository
from transcriber.db.database import Database
from transcriber.options import TranscribeOptions, TranscribeOptionsBuilder
from transcriber.pipeline import Pipeline, PipelineRun
from transcriber.registry import ModelRegistry
from transcriber.types import MediaSource, ModelInfo, ResolvedModel, Transcript, parse_source

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.sqlite3"


class Transcriber:
    """Owns the model cache and the pipeline for the lifetime of a process."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        fetcher: Fetcher | None = None,
        decoder: Decoder | None = None,
        inferencer: Inferencer | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.database = Database(self.settings.cache_dir / INDEX_FILENAME)
        self.cache_index = CacheIndexRepository(self.database)
        self.registry = ModelRegistry(
            cache_dir=self.settings.cache_dir,
            index=self.cache_index,
            base_url=self.settings.model_base_url,
            verify_cached=self.settings.verify_cached_models,
            timeout_seconds=self.settings.download_timeout_seconds,
            transport=transport,
        )
        self.pipeline = Pipeline(
            fetcher=fetcher
            or YtDlpFetcher(self.settings.ytdlp_bin, timeout_seconds=self.settings.fetch_timeout_seconds),
            decoder=decoder or FfmpegDecoder(self.settings.ffmpeg_bin),
            inferencer=inferencer
            or WhisperCppInferencer(
                self.settings.whisper_bin,
                threads=self.settings.threads,
                vad_model=self.settings.vad_model,
                timeout_seconds=self.settings.inference_timeout_seconds,
            ),
            registry=self.registry,
            work_root=self.settings.work_dir,
        )
        logger.debug("Model cache at %s, scratch under %s", self.settings.cache_dir, self.settings.work_dir)

    def options(self) -> TranscribeOptionsBuilder:
        return TranscribeOptions.builder(
            gpu_supported=self.settings.gpu_available,
            default_model=self.settings.default_model,
        )

    async def transcribe(
        self,
        source: str | Path | MediaSource,
        options: TranscribeOptions | None = None,
    ) -> Transcript:
        options = options or self.options().build()
        return await self.pipeline.run(parse_source(source), options)

    def start(
        self,
        source: str | Path | MediaSource,
        options: TranscribeOptions | None = None,
    ) -> PipelineRun:
        options = options or self.options().build()
        return self.pipeline.start(parse_source(source), options)

    def list_models(self) -> list[ModelInfo]:
        return self.registry.list_models()

    async def download_model(self, identifier: str) -> ResolvedModel:
        return await self.registry.download(identifier)

    def close(self) -> None:
        self.database.close()

"""Model provisioning: resolve a model spec to a verified local file.

The registry is the only shared mutable state in the process. Reads of an
already published cache entry never take a lock; the two mutation points are
the per-key in-flight provisioning task and the atomic ``os.replace`` that
publishes a verified download.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import tempfile
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import BinaryIO
from urllib.parse import urlparse

import httpx

from transcriber.catalog import CATALOG, HUGGINGFACE_BASE, CatalogModel
from transcriber.db.cache_index import CacheIndexRepository
from transcriber.errors import ChecksumMismatch, DownloadFailed, UnsupportedModel
from transcriber.types import CacheEntry, ModelInfo, ModelSpec, ResolvedModel, split_checksum
from transcriber.utils.url import is_remote_url

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 20

# The largest whisper model (large-v3) is about 2.9 GB.
MAX_MODEL_BYTES = 5_000_000_000


@dataclass(frozen=True, slots=True)
class _ModelSource:
    key: str
    identifier: str
    checksum: str
    filename: str
    url: str | None = None
    local_path: Path | None = None
    custom: bool = False


def hash_file(path: Path, algorithm: str) -> str:
    digest = hashlib.new(algorithm)
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def format_bytes(size: int) -> str:
    if size >= 1_000_000_000:
        return f"{size / 1_000_000_000:.1f} GB"
    if size >= 1_000_000:
        return f"{size / 1_000_000:.0f} MB"
    return f"{size / 1_000:.0f} KB"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ModelRegistry:
    def __init__(
        self,
        *,
        cache_dir: Path,
        index: CacheIndexRepository,
        base_url: str = HUGGINGFACE_BASE,
        verify_cached: bool = False,
        timeout_seconds: float = 600.0,
        models: dict[str, CatalogModel] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cache_dir = cache_dir
        self.index = index
        self.base_url = base_url
        self.verify_cached = verify_cached
        self.timeout_seconds = timeout_seconds
        self.models = CATALOG if models is None else models
        self._transport = transport
        self._resolved: dict[str, ResolvedModel] = {}
        self._inflight: dict[str, asyncio.Task[ResolvedModel]] = {}

    async def resolve(self, spec: ModelSpec) -> ResolvedModel:
        """Return a verified local model, downloading it at most once per key.

        Concurrent callers asking for the same key share one provisioning task
        and observe the same result or the same exception. A caller that is
        cancelled while waiting does not cancel the shared download.
        """
        source = self._source_for(spec)

        # No await between this check and registering the in-flight task.
        cached = self._lookup_cached(source)
        if cached is not None:
            return replace(cached, backend=spec.backend)

        task = self._inflight.get(source.key)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._provision(source), name=f"provision-model:{source.key}"
            )
            self._inflight[source.key] = task
            task.add_done_callback(partial(self._forget, source.key))
        else:
            logger.info("Joining in-flight download of model %s", source.identifier)

        resolved = await asyncio.shield(task)
        return replace(resolved, backend=spec.backend)

    async def download(self, identifier: str) -> ResolvedModel:
        return await self.resolve(ModelSpec.named(identifier))

    def list_models(self) -> list[ModelInfo]:
        entries = self.index.list_entries()
        cached = {entry.key: entry for entry in entries if not entry.custom}

        models = [
            ModelInfo(
                identifier=model.identifier,
                size_label=model.size_label,
                cached=model.identifier in cached,
                english_only=model.english_only,
                path=cached[model.identifier].path if model.identifier in cached else None,
            )
            for model in self.models.values()
        ]
        for entry in entries:
            if entry.custom:
                models.append(
                    ModelInfo(
                        identifier=entry.identifier,
                        size_label=format_bytes(entry.size),
                        cached=True,
                        custom=True,
                        path=entry.path,
                    )
                )
        return models

    def _forget(self, key: str, task: asyncio.Task[ResolvedModel]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Marks the exception as retrieved even when every waiter went away.
            task.exception()

    def _source_for(self, spec: ModelSpec) -> _ModelSource:
        if spec.is_custom:
            if not spec.checksum:
                raise UnsupportedModel(spec.identifier, f"custom model {spec.identifier!r} has no checksum")
            try:
                split_checksum(spec.checksum)
            except ValueError as exc:
                raise UnsupportedModel(spec.identifier, str(exc)) from exc
            key = spec.cache_key
            if spec.url:
                name = Path(urlparse(spec.url).path).name or "model.bin"
                return _ModelSource(
                    key=key,
                    identifier=spec.identifier,
                    checksum=spec.checksum,
                    filename=f"{key}-{name}",
                    url=spec.url,
                    custom=True,
                )
            assert spec.path is not None
            return _ModelSource(
                key=key,
                identifier=spec.identifier,
                checksum=spec.checksum,
                filename=spec.path.name,
                local_path=spec.path,
                custom=True,
            )

        model = self.models.get(spec.identifier.strip().lower())
        if model is not None:
            return _ModelSource(
                key=model.identifier,
                identifier=model.identifier,
                checksum=model.checksum,
                filename=model.filename,
                url=model.url(self.base_url),
            )

        entry = self.index.find_custom(spec.identifier)
        if entry is not None:
            remote = entry.source if entry.source and is_remote_url(entry.source) else None
            return _ModelSource(
                key=entry.key,
                identifier=entry.identifier,
                checksum=entry.checksum,
                filename=entry.path.name,
                url=remote,
                local_path=None if remote else entry.path,
                custom=True,
            )

        raise UnsupportedModel(spec.identifier)

    def _lookup_cached(self, source: _ModelSource) -> ResolvedModel | None:
        memo = self._resolved.get(source.key)
        if memo is not None and memo.checksum == source.checksum and memo.path.exists():
            return memo
        if self.verify_cached:
            return None

        entry = self.index.get(source.key)
        if entry is None or entry.checksum != source.checksum:
            return None
        try:
            size = entry.path.stat().st_size
        except OSError:
            return None
        if size != entry.size:
            return None

        logger.debug("Model %s already cached at %s", source.identifier, entry.path)
        return self._remember(entry)

    def _remember(self, entry: CacheEntry) -> ResolvedModel:
        resolved = ResolvedModel(
            identifier=entry.identifier,
            path=entry.path,
            checksum=entry.checksum,
            size=entry.size,
        )
        self._resolved[entry.key] = resolved
        return resolved

    async def _provision(self, source: _ModelSource) -> ResolvedModel:
        if source.local_path is not None:
            return await self._register_local(source)

        entry = self.index.get(source.key)
        if entry is not None and entry.checksum == source.checksum and entry.path.is_file():
            algorithm, expected = split_checksum(source.checksum)
            actual = await asyncio.to_thread(hash_file, entry.path, algorithm)
            if actual == expected:
                verified = replace(entry, size=entry.path.stat().st_size, verified_at=_now())
                if verified.size == entry.size:
                    self.index.touch(entry.key, verified.verified_at)
                else:
                    self.index.upsert(verified)
                return self._remember(verified)
            logger.warning("Cached model %s failed verification, downloading again", source.identifier)
            # A failed download must not leave the index pointing at the bad file.
            self.index.delete(entry.key)

        return await self._download(source)

    async def _register_local(self, source: _ModelSource) -> ResolvedModel:
        assert source.local_path is not None
        path = source.local_path
        if not path.is_file():
            raise UnsupportedModel(source.identifier, f"custom model file not found: {path}")

        algorithm, expected = split_checksum(source.checksum)
        actual = await asyncio.to_thread(hash_file, path, algorithm)
        if actual != expected:
            raise ChecksumMismatch(
                expected=f"{algorithm}:{expected}",
                actual=f"{algorithm}:{actual}",
                model_id=source.identifier,
            )

        entry = CacheEntry(
            key=source.key,
            identifier=source.identifier,
            path=path.resolve(),
            checksum=source.checksum,
            size=path.stat().st_size,
            verified_at=_now(),
            source=str(path),
            custom=True,
        )
        self.index.upsert(entry)
        logger.info("Registered custom model %s at %s", source.identifier, entry.path)
        return self._remember(entry)

    async def _download(self, source: _ModelSource) -> ResolvedModel:
        if source.url is None:
            raise UnsupportedModel(source.identifier, f"no download source for model {source.identifier!r}")

        dest = self.cache_dir / source.filename
        algorithm, expected = split_checksum(source.checksum)
        hasher = hashlib.new(algorithm)

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{source.filename}.", suffix=".part", dir=self.cache_dir)
        except OSError as exc:
            raise DownloadFailed(
                f"could not prepare model cache {self.cache_dir}: {exc}",
                cause=str(exc),
            ) from exc
        tmp_path = Path(tmp_name)
        logger.info("Downloading model %s from %s", source.identifier, source.url)
        try:
            with os.fdopen(fd, "wb") as handle:
                size = await self._stream_to(source, handle, hasher)

            actual = hasher.hexdigest()
            if actual != expected:
                raise ChecksumMismatch(
                    expected=f"{algorithm}:{expected}",
                    actual=f"{algorithm}:{actual}",
                    model_id=source.identifier,
                )
            os.replace(tmp_path, dest)
        except OSError as exc:
            raise DownloadFailed(
                f"could not write model {source.identifier}: {exc}",
                cause=str(exc),
            ) from exc
        finally:
            # No-op once the file has been published.
            tmp_path.unlink(missing_ok=True)

        entry = CacheEntry(
            key=source.key,
            identifier=source.identifier,
            path=dest,
            checksum=source.checksum,
            size=size,
            verified_at=_now(),
            source=source.url,
            custom=source.custom,
        )
        self.index.upsert(entry)
        logger.info("Model %s saved to %s (%s)", source.identifier, dest, format_bytes(size))
        return self._remember(entry)

    async def _stream_to(self, source: _ModelSource, handle: BinaryIO, hasher: hashlib._Hash) -> int:
        assert source.url is not None
        size = 0
        total = 0
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", source.url) as response:
                    if response.status_code >= 400:
                        raise DownloadFailed(
                            f"model download failed ({response.status_code}) for {source.identifier}",
                            cause=f"HTTP {response.status_code} from {source.url}",
                        )
                    if "content-encoding" not in response.headers:
                        total = int(response.headers.get("content-length") or 0)
                    if total > MAX_MODEL_BYTES:
                        raise DownloadFailed(
                            f"model file too large ({total} bytes, max {MAX_MODEL_BYTES})",
                            cause="content-length over limit",
                        )
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        size += len(chunk)
                        if size > MAX_MODEL_BYTES:
                            raise DownloadFailed(
                                f"download exceeded max size ({MAX_MODEL_BYTES} bytes)",
                                cause="stream over limit",
                            )
                        handle.write(chunk)
                        hasher.update(chunk)
        except httpx.HTTPError as exc:
            raise DownloadFailed(
                f"model download failed for {source.identifier}: {exc}",
                cause=str(exc) or type(exc).__name__,
            ) from exc

        if total and size != total:
            raise DownloadFailed(
                f"file size mismatch (expected {total} bytes, got {size}); download may be corrupt",
                cause="truncated download",
            )
        return size

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from transcriber.catalog import HUGGINGFACE_BASE


@dataclass(slots=True)
class Settings:
    host: str
    port: int
    mcp_path: str
    health_path: str
    cache_dir: Path
    work_dir: Path
    model_base_url: str
    default_model: str
    ytdlp_bin: str
    ffmpeg_bin: str
    whisper_bin: str
    vad_model: Path | None
    gpu_available: bool
    threads: int | None
    verify_cached_models: bool
    download_timeout_seconds: float
    fetch_timeout_seconds: float
    inference_timeout_seconds: float | None


def _as_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    return int(raw)


def _as_opt_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw)


def _as_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _as_opt_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return float(raw)


def _as_opt_path(name: str) -> Path | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return Path(raw.strip()).expanduser().resolve()


def _as_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _normalized_path(path: str) -> str:
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def _default_cache_dir() -> Path:
    xdg = os.getenv("XDG_CACHE_HOME", "").strip()
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "transcriber" / "models"


def load_settings() -> Settings:
    load_dotenv()
    cache_dir = Path(os.getenv("TRANSCRIBER_CACHE_DIR") or _default_cache_dir()).expanduser().resolve()
    work_dir = Path(
        os.getenv("TRANSCRIBER_WORK_DIR") or Path(tempfile.gettempdir()) / "transcriber"
    ).expanduser().resolve()

    return Settings(
        host=os.getenv("HOST", "127.0.0.1"),
        port=_as_int("PORT", 3000),
        mcp_path=_normalized_path(os.getenv("MCP_PATH", "/mcp")),
        health_path=_normalized_path(os.getenv("HEALTH_PATH", "/healthz")),
        cache_dir=cache_dir,
        work_dir=work_dir,
        model_base_url=os.getenv("TRANSCRIBER_MODEL_BASE_URL", HUGGINGFACE_BASE).rstrip("/"),
        default_model=os.getenv("TRANSCRIBER_DEFAULT_MODEL", "base").strip() or "base",
        ytdlp_bin=os.getenv("YTDLP_BIN", "yt-dlp"),
        ffmpeg_bin=os.getenv("FFMPEG_BIN", "ffmpeg"),
        whisper_bin=os.getenv("WHISPER_CPP_BIN", "whisper-cli"),
        vad_model=_as_opt_path("TRANSCRIBER_VAD_MODEL"),
        gpu_available=_as_bool("TRANSCRIBER_GPU", False),
        threads=_as_opt_int("TRANSCRIBER_THREADS"),
        verify_cached_models=_as_bool("TRANSCRIBER_VERIFY_CACHED_MODELS", False),
        download_timeout_seconds=_as_float("TRANSCRIBER_DOWNLOAD_TIMEOUT", 600.0),
        fetch_timeout_seconds=_as_float("TRANSCRIBER_FETCH_TIMEOUT", 1800.0),
        inference_timeout_seconds=_as_opt_float("TRANSCRIBER_INFER_TIMEOUT"),
    )

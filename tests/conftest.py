from pathlib import Path

import pytest

from transcriber.config import Settings


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        host="127.0.0.1",
        port=3000,
        mcp_path="/mcp",
        health_path="/healthz",
        cache_dir=tmp_path / "cache",
        work_dir=tmp_path / "work",
        model_base_url="https://models.test",
        default_model="base",
        ytdlp_bin="yt-dlp",
        ffmpeg_bin="ffmpeg",
        whisper_bin="whisper-cli",
        vad_model=None,
        gpu_available=False,
        threads=None,
        verify_cached_models=False,
        download_timeout_seconds=30.0,
        fetch_timeout_seconds=30.0,
        inference_timeout_seconds=None,
    )

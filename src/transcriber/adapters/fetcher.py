from __future__ import annotations

import json
import logging
from pathlib import Path

from transcriber.adapters.base import FetchError
from transcriber.adapters.process import ProcessTimeout, run_process
from transcriber.types import FetchResult
from transcriber.utils.url import validate_url

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = (".wav", ".mp3", ".ogg", ".m4a", ".opus", ".flac")


class YtDlpFetcher:
    def __init__(self, binary: str = "yt-dlp", timeout_seconds: float | None = 1800.0) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    async def fetch(self, url: str, dest_dir: Path) -> FetchResult:
        try:
            url = validate_url(url)
        except ValueError as exc:
            raise FetchError(str(exc), code="unsupported_url") from exc

        dest_dir.mkdir(parents=True, exist_ok=True)
        output_template = str(dest_dir / "%(id)s.%(ext)s")

        cmd = [
            self.binary,
            "--dump-json",
            "--no-simulate",
            "--no-playlist",
            "--no-warnings",
            "--no-exec",
            "-f",
            "bestaudio/best",
            "-x",
            "--audio-format",
            "wav",
            "-o",
            output_template,
            url,
        ]

        try:
            completed = await run_process(cmd, timeout=self.timeout_seconds)
        except FileNotFoundError as exc:
            raise FetchError(f"{self.binary} not found; install yt-dlp", code="tool_missing") from exc
        except ProcessTimeout as exc:
            raise FetchError(str(exc), code="timeout") from exc

        if completed.returncode != 0:
            stderr = completed.stderr_text.strip() or "yt-dlp failed"
            code = "unsupported_site" if "Unsupported URL" in stderr else "download_failed"
            raise FetchError(stderr, code=code)

        metadata = self._parse_last_json_line(completed.stdout_text)
        audio_path = self._find_audio_file(dest_dir, metadata)
        logger.info("Fetched %s to %s", url, audio_path.name)
        return FetchResult(audio_path=audio_path, metadata=metadata)

    @staticmethod
    def _parse_last_json_line(stdout: str) -> dict[str, object]:
        lines = [line.strip() for line in stdout.splitlines() if line.strip()]
        for line in reversed(lines):
            if line.startswith("{") and line.endswith("}"):
                try:
                    value = json.loads(line)
                    if isinstance(value, dict):
                        return value
                except json.JSONDecodeError:
                    continue
        raise FetchError("Could not parse yt-dlp metadata JSON")

    @staticmethod
    def _find_audio_file(dest_dir: Path, metadata: dict[str, object]) -> Path:
        root = dest_dir.resolve()
        candidates: list[Path] = []

        for entry in metadata.get("requested_downloads") or []:
            if isinstance(entry, dict) and entry.get("filepath"):
                candidates.append(Path(str(entry["filepath"])))
        video_id = str(metadata.get("id") or "").strip()
        if video_id:
            candidates.append(dest_dir / f"{video_id}.wav")

        for candidate in candidates:
            if candidate.is_file():
                resolved = candidate.resolve()
                if not resolved.is_relative_to(root):
                    raise FetchError(f"yt-dlp wrote outside the scratch directory: {resolved}")
                return resolved

        produced = sorted(
            (p for p in dest_dir.iterdir() if p.is_file() and p.suffix.lower() in AUDIO_EXTENSIONS),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        if not produced:
            raise FetchError("Audio file was not produced by yt-dlp")
        return produced[0].resolve()

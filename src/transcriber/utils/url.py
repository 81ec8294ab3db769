from __future__ import annotations

from urllib.parse import urlparse

REMOTE_SCHEMES = ("http", "https")


def is_remote_url(value: str) -> bool:
    parsed = urlparse(value.strip())
    return parsed.scheme.lower() in REMOTE_SCHEMES and bool(parsed.netloc)


def validate_url(url: str) -> str:
    """Return the stripped URL, or raise ValueError unless it is plain http(s)."""
    trimmed = url.strip()
    if not is_remote_url(trimmed) or any(ch.isspace() for ch in trimmed):
        raise ValueError(f"invalid URL (must start with http:// or https://): {trimmed}")
    return trimmed

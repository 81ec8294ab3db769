import pytest

from transcriber.types import LocalPath, RemoteUrl, parse_source
from transcriber.utils.url import is_remote_url, validate_url


def test_is_remote_url() -> None:
    assert is_remote_url("https://www.youtube.com/watch?v=abc123")
    assert is_remote_url("HTTP://example.com/a.mp3")
    assert not is_remote_url("ftp://example.com/a.mp3")
    assert not is_remote_url("https://")
    assert not is_remote_url("/home/me/talk.mp3")


def test_validate_url_strips_and_rejects() -> None:
    assert validate_url("  https://example.com/v  ") == "https://example.com/v"
    with pytest.raises(ValueError):
        validate_url("https://example.com/a b")
    with pytest.raises(ValueError):
        validate_url("youtube.com/watch?v=abc123")


def test_parse_source() -> None:
    assert parse_source("https://example.com/v") == RemoteUrl("https://example.com/v")
    local = parse_source("recordings/talk.wav")
    assert isinstance(local, LocalPath)
    assert local.path.name == "talk.wav"

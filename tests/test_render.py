import json
import math

import pytest

from transcriber.render import format_timestamp, render
from transcriber.types import Segment, Transcript, WordTiming


def _transcript() -> Transcript:
    return Transcript(
        segments=(
            Segment(start=0.0, end=1.5, text=" Hello there. "),
            Segment(
                start=1.5,
                end=3.0,
                text="General Kenobi.",
                words=(
                    WordTiming(word="General", start=1.5, end=2.1, probability=0.9),
                    WordTiming(word="Kenobi.", start=2.1, end=3.0, probability=0.8),
                ),
            ),
        ),
        language="en",
        duration=3.2,
        model="base",
        source_url="https://example.com/clip",
        source_title="Clip",
    )


def test_srt_output_is_exact() -> None:
    assert _transcript().to_srt() == (
        "1\n00:00:00,000 --> 00:00:01,500\nHello there.\n\n"
        "2\n00:00:01,500 --> 00:00:03,000\nGeneral Kenobi.\n\n"
    )


def test_vtt_output_is_exact() -> None:
    assert _transcript().to_vtt() == (
        "WEBVTT\n\n"
        "00:00:00.000 --> 00:00:01.500\nHello there.\n\n"
        "00:00:01.500 --> 00:00:03.000\nGeneral Kenobi.\n\n"
    )


def test_timestamps_round_half_up_and_clamp_negative() -> None:
    assert format_timestamp(0.0625) == "00:00:00,063"
    assert format_timestamp(3661.25, separator=".") == "01:01:01.250"
    assert format_timestamp(-2.0) == "00:00:00,000"


def test_text_joins_stripped_segments() -> None:
    assert _transcript().to_text() == "Hello there. General Kenobi."
    assert _transcript().text == "Hello there. General Kenobi."


def test_json_includes_words_and_metadata() -> None:
    payload = json.loads(_transcript().to_json())
    assert payload["language"] == "en"
    assert payload["source_title"] == "Clip"
    assert "words" not in payload["segments"][0]
    assert payload["segments"][1]["words"][1]["word"] == "Kenobi."

    pretty = _transcript().to_json_pretty()
    assert pretty.startswith("{\n  ")
    assert Transcript.from_dict(json.loads(pretty)) == _transcript()


def test_markdown_lists_timestamped_segments() -> None:
    markdown = _transcript().to_markdown()
    assert markdown.startswith("# Clip\n")
    assert "**Model**: base" in markdown
    assert "## Transcript" in markdown
    assert "- [00:01] General Kenobi." in markdown


def test_render_dispatch_and_unknown_format() -> None:
    transcript = _transcript()
    assert render(transcript, "srt") == transcript.to_srt()
    assert transcript.render("text") == transcript.to_text()
    with pytest.raises(ValueError):
        render(transcript, "docx")  # type: ignore[arg-type]


def test_empty_transcript_renders_header_only() -> None:
    transcript = Transcript(segments=(), language="unknown")
    assert transcript.to_srt() == ""
    assert transcript.to_vtt() == "WEBVTT\n\n"
    assert transcript.to_text() == ""


def test_invalid_segments_are_rejected() -> None:
    with pytest.raises(ValueError):
        Segment(start=2.0, end=1.0, text="backwards")
    with pytest.raises(ValueError):
        Segment(start=-0.1, end=1.0, text="negative")
    for start, end in ((math.nan, 1.0), (0.0, math.nan), (0.0, math.inf), (-math.inf, 1.0)):
        with pytest.raises(ValueError, match="finite"):
            Segment(start=start, end=end, text="not a time")
    with pytest.raises(ValueError):
        Transcript(
            segments=(Segment(start=0.0, end=2.0, text="a"), Segment(start=1.0, end=3.0, text="b")),
            language="en",
        )

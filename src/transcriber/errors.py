"""Typed outcomes surfaced by the pipeline and the model registry.

Callers can tell three situations apart without parsing messages:

* configuration problems (``category == "configuration"``) need a fix before
  retrying;
* external failures (``category == "external"``) are usually worth retrying
  as-is;
* :class:`Cancelled` is not an ``Exception`` at all, so ``except Exception``
  handlers never treat a user abort as a failure.
"""

from __future__ import annotations

import asyncio
from typing import Literal

ErrorCategory = Literal["configuration", "external", "input"]


class TranscriberError(Exception):
    code: str = "transcriber_error"
    category: ErrorCategory = "external"
    retryable: bool = False

    def __init__(self, message: str, *, cause: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict[str, object]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category,
            "retryable": self.retryable,
            "cause": self.cause,
        }


class InvalidOptions(TranscriberError, ValueError):
    code = "invalid_options"
    category = "configuration"


class PipelineError(TranscriberError):
    code = "pipeline_error"


class FetchFailed(PipelineError):
    code = "fetch_failed"
    retryable = True


class DecodeFailed(PipelineError):
    code = "decode_failed"
    category = "input"


class InferFailed(PipelineError):
    code = "infer_failed"
    retryable = True


class RegistryError(PipelineError):
    code = "registry_error"


class UnsupportedModel(RegistryError):
    code = "unsupported_model"
    category = "configuration"

    def __init__(self, model_id: str, message: str | None = None) -> None:
        super().__init__(message or f"unsupported model: {model_id!r}")
        self.model_id = model_id


class DownloadFailed(RegistryError):
    code = "download_failed"
    retryable = True


class ChecksumMismatch(RegistryError):
    code = "checksum_mismatch"
    retryable = True

    def __init__(self, *, expected: str, actual: str, model_id: str | None = None) -> None:
        label = f" for {model_id}" if model_id else ""
        super().__init__(f"checksum mismatch{label}: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual
        self.model_id = model_id


class Cancelled(asyncio.CancelledError):
    """A pipeline run was cancelled; ``stage`` names where it stopped."""

    code = "cancelled"

    def __init__(self, stage: str | None = None) -> None:
        super().__init__(f"pipeline cancelled during {stage}" if stage else "pipeline cancelled")
        self.stage = stage

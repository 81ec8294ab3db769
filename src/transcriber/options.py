from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from pathlib import Path

from transcriber import catalog
from transcriber.errors import InvalidOptions
from transcriber.languages import resolve_language
from transcriber.types import Backend, ModelSpec, split_checksum

DEFAULT_MODEL = "base"
MAX_BEAM_SIZE = 16


@dataclass(frozen=True, slots=True)
class AudioProcessing:
    """Optional clean-up applied to decoded PCM. Everything is off by default."""

    dc_offset_removal: bool = False
    normalize: bool = False
    trim_silence: bool = False
    silence_threshold_db: float = -40.0
    silence_pad_ms: int = 50

    @property
    def enabled(self) -> bool:
        return self.dc_offset_removal or self.normalize or self.trim_silence


@dataclass(frozen=True, slots=True)
class TranscribeOptions:
    model: ModelSpec = field(default_factory=lambda: ModelSpec.named(DEFAULT_MODEL))
    language: str | None = None
    translate: bool = False
    word_timestamps: bool = False
    beam_size: int | None = None
    gpu: bool = False
    gpu_device: int | None = None
    vad: bool = True
    threads: int | None = None
    temperature: float = 0.0
    audio_processing: AudioProcessing = field(default_factory=AudioProcessing)

    @property
    def auto_detect(self) -> bool:
        return self.language is None

    @classmethod
    def builder(
        cls,
        *,
        gpu_supported: bool | None = None,
        default_model: str | None = None,
    ) -> TranscribeOptionsBuilder:
        return TranscribeOptionsBuilder(gpu_supported=gpu_supported, default_model=default_model)


class TranscribeOptionsBuilder:
    """Collects options one call at a time and rejects bad values immediately.

    Every setter raises :class:`InvalidOptions` as soon as it sees a bad value,
    so a misconfigured request fails before anything is fetched or downloaded.
    """

    def __init__(self, *, gpu_supported: bool | None = None, default_model: str | None = None) -> None:
        if gpu_supported is None:
            from transcriber.config import load_settings

            gpu_supported = load_settings().gpu_available
        self._gpu_supported = gpu_supported
        self._options = TranscribeOptions()
        if default_model:
            self.model(default_model)

    def model(self, model: str | ModelSpec) -> TranscribeOptionsBuilder:
        if isinstance(model, ModelSpec):
            if model.is_custom:
                return self.custom_model(
                    model.path or model.url or "",
                    model.checksum or "",
                    identifier=model.identifier,
                )
            model = model.identifier
        name = model.strip().lower()
        if catalog.lookup(name) is None:
            path = Path(model).expanduser()
            if path.suffix == ".bin" or path.exists():
                raise InvalidOptions(
                    f"custom model {model!r} needs a checksum; use custom_model(path, checksum)"
                )
            raise InvalidOptions(
                f"unknown model {model!r}; known models: {', '.join(catalog.known_models())}"
            )
        return self._set(model=ModelSpec.named(name))

    def custom_model(
        self,
        location: str | Path,
        checksum: str,
        *,
        identifier: str | None = None,
    ) -> TranscribeOptionsBuilder:
        if not str(location).strip():
            raise InvalidOptions("custom model location is empty")
        if not checksum or not checksum.strip():
            raise InvalidOptions("custom models require a checksum")
        try:
            split_checksum(checksum)
        except ValueError as exc:
            raise InvalidOptions(str(exc)) from exc
        return self._set(model=ModelSpec.custom(location, checksum, identifier=identifier))

    def language(self, language: str | None) -> TranscribeOptionsBuilder:
        return self._set(language=resolve_language(language))

    def translate(self, enabled: bool = True) -> TranscribeOptionsBuilder:
        return self._set(translate=bool(enabled))

    def word_timestamps(self, enabled: bool = True) -> TranscribeOptionsBuilder:
        return self._set(word_timestamps=bool(enabled))

    def beam_size(self, size: int | None) -> TranscribeOptionsBuilder:
        if size is None:
            return self._set(beam_size=None)
        value = _as_int(size, "beam size")
        if not 1 <= value <= MAX_BEAM_SIZE:
            raise InvalidOptions(f"beam size must be between 1 and {MAX_BEAM_SIZE}, got {size}")
        return self._set(beam_size=value)

    def gpu(self, enabled: bool = True) -> TranscribeOptionsBuilder:
        if enabled and not self._gpu_supported:
            raise InvalidOptions("GPU requested but this whisper.cpp build has no GPU support")
        return self._set(gpu=bool(enabled))

    def gpu_device(self, index: int | None) -> TranscribeOptionsBuilder:
        if index is None:
            return self._set(gpu_device=None)
        device = _as_int(index, "GPU device")
        if device < 0:
            raise InvalidOptions(f"GPU device index cannot be negative, got {index}")
        return self._set(gpu_device=device)

    def vad(self, enabled: bool = True) -> TranscribeOptionsBuilder:
        return self._set(vad=bool(enabled))

    def threads(self, count: int | None) -> TranscribeOptionsBuilder:
        if count is None:
            return self._set(threads=None)
        value = _as_int(count, "thread count")
        if value < 1:
            raise InvalidOptions(f"thread count must be at least 1, got {count}")
        return self._set(threads=value)

    def temperature(self, value: float) -> TranscribeOptionsBuilder:
        number = _as_float(value, "temperature")
        if not 0.0 <= number <= 1.0:
            raise InvalidOptions(f"temperature must be between 0.0 and 1.0, got {value}")
        return self._set(temperature=number)

    def audio_processing(self, processing: AudioProcessing) -> TranscribeOptionsBuilder:
        if processing.silence_pad_ms < 0:
            raise InvalidOptions("silence padding cannot be negative")
        if processing.silence_threshold_db > 0:
            raise InvalidOptions("silence threshold is in dBFS and must be <= 0")
        return self._set(audio_processing=processing)

    def build(self) -> TranscribeOptions:
        options = self._options
        if options.gpu_device is not None and not options.gpu:
            raise InvalidOptions("a GPU device was selected but GPU inference is off; call gpu(True)")
        entry = None if options.model.is_custom else catalog.lookup(options.model.identifier)
        if entry is not None and entry.english_only:
            if options.translate:
                raise InvalidOptions(f"model {entry.identifier} is English-only and cannot translate")
            if options.language not in (None, "en"):
                raise InvalidOptions(
                    f"model {entry.identifier} is English-only; language {options.language!r} is not available"
                )
        backend = Backend.GPU if options.gpu else Backend.CPU
        return replace(options, model=replace(options.model, backend=backend))

    def _set(self, **changes: object) -> TranscribeOptionsBuilder:
        self._options = replace(self._options, **changes)
        return self


def _as_int(value: object, label: str) -> int:
    if isinstance(value, bool):
        raise InvalidOptions(f"{label} must be a whole number, got {value!r}")
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise InvalidOptions(f"{label} must be a whole number, got {value!r}") from exc


def _as_float(value: object, label: str) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise InvalidOptions(f"{label} must be a number, got {value!r}") from exc
    if not math.isfinite(number):
        raise InvalidOptions(f"{label} must be finite, got {value!r}")
    return number

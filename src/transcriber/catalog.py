from __future__ import annotations

from dataclasses import dataclass

HUGGINGFACE_BASE = "https://huggingface.co/ggerganov/whisper.cpp/resolve/main"

# Bump when an entry's filename or checksum changes; stored in the cache index.
CATALOG_VERSION = 1


@dataclass(frozen=True, slots=True)
class CatalogModel:
    identifier: str
    filename: str
    checksum: str
    size_label: str

    @property
    def english_only(self) -> bool:
        return self.identifier.endswith(".en")

    def url(self, base_url: str = HUGGINGFACE_BASE) -> str:
        return f"{base_url.rstrip('/')}/{self.filename}"


def _entry(identifier: str, sha1: str, size_label: str) -> CatalogModel:
    return CatalogModel(
        identifier=identifier,
        filename=f"ggml-{identifier}.bin",
        checksum=f"sha1:{sha1}",
        size_label=size_label,
    )


# SHA-1 digests as published in whisper.cpp's models/README.md.
CATALOG: dict[str, CatalogModel] = {
    entry.identifier: entry
    for entry in (
        _entry("tiny", "bd577a113a864445d4c299885e0cb97d4ba92b5f", "75 MB"),
        _entry("tiny.en", "c78c86eb1a8faa21b369bcd33207cc90d64ae9df", "75 MB"),
        _entry("base", "465707469ff3a37a2b9b8d8f89f2f99de7299dac", "142 MB"),
        _entry("base.en", "137c40403d78fd54d454da0f9bd998f78703390c", "142 MB"),
        _entry("small", "55356645c2b361a969dfd0ef2c5a50d530afd8d5", "466 MB"),
        _entry("small.en", "db8a495a91d927739e50b3fc1cc4c6b8f6c2d022", "466 MB"),
        _entry("medium", "fd9727b6e1217c2f614f9b698455c4ffd82463b4", "1.5 GB"),
        _entry("medium.en", "8c30f0e44ce9560643ebd10bbe50cd20eafd3723", "1.5 GB"),
        _entry("large-v1", "b1caaf735c4cc1429223d5a74f0f4d0b9b59a299", "2.9 GB"),
        _entry("large-v2", "0f4c8e34f21cf1a914c59d8b3ce882345ad349d6", "2.9 GB"),
        _entry("large-v3", "ad82bf6a9043ceed055076d0fd39f5f186ff8062", "2.9 GB"),
        _entry("large-v3-turbo", "4af2b29d7ec73d781377bfd1758ca957a807e941", "1.6 GB"),
    )
}


def lookup(identifier: str) -> CatalogModel | None:
    return CATALOG.get(identifier.strip().lower())


def known_models() -> list[str]:
    return list(CATALOG)

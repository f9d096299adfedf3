"""Extension tables: canonical content types, media kinds and document families."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

UNKNOWN_MIME = "application/octet-stream"


class MediaKind(Enum):
    """Broad classification used to pick a strategy."""

    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    OTHER = "other"


@dataclass(frozen=True)
class FormatSpec:
    """What an extension means."""

    extension: str
    mime: str
    kind: MediaKind
    family: str | None = None


EXTENSION_ALIASES = {
    "jpeg": "jpg",
    "jpe": "jpg",
    "tif": "tiff",
    "htm": "html",
}

# MIME values follow the names the `filetype` matchers report, so sniffed
# types and destination extensions compare directly.
_FORMATS = [
    FormatSpec("jpg", "image/jpeg", MediaKind.IMAGE),
    FormatSpec("png", "image/png", MediaKind.IMAGE),
    FormatSpec("gif", "image/gif", MediaKind.IMAGE),
    FormatSpec("webp", "image/webp", MediaKind.IMAGE),
    FormatSpec("bmp", "image/bmp", MediaKind.IMAGE),
    FormatSpec("tiff", "image/tiff", MediaKind.IMAGE),
    FormatSpec("heic", "image/heic", MediaKind.IMAGE),
    FormatSpec("avif", "image/avif", MediaKind.IMAGE),
    FormatSpec("mp3", "audio/mpeg", MediaKind.AUDIO),
    FormatSpec("wav", "audio/x-wav", MediaKind.AUDIO),
    FormatSpec("flac", "audio/x-flac", MediaKind.AUDIO),
    FormatSpec("aac", "audio/aac", MediaKind.AUDIO),
    FormatSpec("ogg", "audio/ogg", MediaKind.AUDIO),
    FormatSpec("opus", "audio/opus", MediaKind.AUDIO),
    FormatSpec("m4a", "audio/mp4", MediaKind.AUDIO),
    FormatSpec("mp4", "video/mp4", MediaKind.VIDEO),
    FormatSpec("m4v", "video/x-m4v", MediaKind.VIDEO),
    FormatSpec("mov", "video/quicktime", MediaKind.VIDEO),
    FormatSpec("mkv", "video/x-matroska", MediaKind.VIDEO),
    FormatSpec("webm", "video/webm", MediaKind.VIDEO),
    FormatSpec("avi", "video/x-msvideo", MediaKind.VIDEO),
    FormatSpec("pdf", "application/pdf", MediaKind.DOCUMENT),
    FormatSpec("doc", "application/msword", MediaKind.DOCUMENT, "text"),
    FormatSpec(
        "docx",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        MediaKind.DOCUMENT,
        "text",
    ),
    FormatSpec("odt", "application/vnd.oasis.opendocument.text", MediaKind.DOCUMENT, "text"),
    FormatSpec("rtf", "application/rtf", MediaKind.DOCUMENT, "text"),
    FormatSpec("txt", "text/plain", MediaKind.DOCUMENT, "text"),
    FormatSpec("html", "text/html", MediaKind.DOCUMENT, "text"),
    FormatSpec("xls", "application/vnd.ms-excel", MediaKind.DOCUMENT, "spreadsheet"),
    FormatSpec(
        "xlsx",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        MediaKind.DOCUMENT,
        "spreadsheet",
    ),
    FormatSpec("ods", "application/vnd.oasis.opendocument.spreadsheet", MediaKind.DOCUMENT, "spreadsheet"),
    FormatSpec("csv", "text/csv", MediaKind.DOCUMENT, "spreadsheet"),
    FormatSpec("ppt", "application/vnd.ms-powerpoint", MediaKind.DOCUMENT, "presentation"),
    FormatSpec(
        "pptx",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        MediaKind.DOCUMENT,
        "presentation",
    ),
    FormatSpec("odp", "application/vnd.oasis.opendocument.presentation", MediaKind.DOCUMENT, "presentation"),
]

FORMATS: dict[str, FormatSpec] = {spec.extension: spec for spec in _FORMATS}
FORMATS_BY_MIME: dict[str, FormatSpec] = {spec.mime: spec for spec in _FORMATS}

# Other MIME spellings seen in the wild for the same canonical types.
MIME_ALIASES = {
    "audio/wav": "audio/x-wav",
    "audio/vnd.wave": "audio/x-wav",
    "audio/flac": "audio/x-flac",
    "audio/x-m4a": "audio/mp4",
    "audio/m4a": "audio/mp4",
    "image/jpg": "image/jpeg",
    "text/rtf": "application/rtf",
}

ZIP_MIME = "application/zip"
ZIP_OFFICE_EXTENSIONS = frozenset({"docx", "xlsx", "pptx", "odt", "ods", "odp"})

# Formats whose content carries several pages or frames.
MULTI_FRAME_SOURCES = frozenset({"gif", "tiff", "pdf"})
SINGLE_FRAME_OUTPUTS = frozenset({"jpg", "png", "bmp"})


def normalize_extension(path: Path) -> str | None:
    """Lower-cased extension of ``path`` with aliases folded, or None."""
    suffix = path.suffix
    if not suffix or suffix == ".":
        return None
    ext = suffix[1:].lower()
    return EXTENSION_ALIASES.get(ext, ext)


def format_for_extension(ext: str | None) -> FormatSpec | None:
    if ext is None:
        return None
    return FORMATS.get(EXTENSION_ALIASES.get(ext, ext))


def canonical_mime(mime: str) -> str:
    return MIME_ALIASES.get(mime, mime)


def kind_for_mime(mime: str) -> MediaKind:
    """Classify a canonical MIME type."""
    spec = FORMATS_BY_MIME.get(mime)
    if spec is not None:
        return spec.kind
    major = mime.split("/", 1)[0]
    if major == "image":
        return MediaKind.IMAGE
    if major == "audio":
        return MediaKind.AUDIO
    if major == "video":
        return MediaKind.VIDEO
    return MediaKind.OTHER


def is_office_input(spec: FormatSpec | None) -> bool:
    return spec is not None and spec.kind == MediaKind.DOCUMENT and spec.family is not None


def is_document_output(source: FormatSpec | None, dest: FormatSpec | None) -> bool:
    """Whether the document backend can turn ``source`` into ``dest``."""
    if not is_office_input(source) or dest is None:
        return False
    if dest.extension == "pdf":
        return True
    return dest.family is not None and dest.family == source.family

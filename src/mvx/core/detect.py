"""Content type detection from leading file bytes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import filetype

from .base import DetectionFailure
from .formats import (
    FORMATS,
    FORMATS_BY_MIME,
    UNKNOWN_MIME,
    ZIP_MIME,
    ZIP_OFFICE_EXTENSIONS,
    MediaKind,
    canonical_mime,
    kind_for_mime,
    normalize_extension,
)

if TYPE_CHECKING:
    from pathlib import Path

LOG = logging.getLogger(__name__)

SNIFF_BYTES = 8192
_UTF8_MAX_SEQUENCE = 4
_HTML_PREFIXES = (b"<!doctype html", b"<html")


@dataclass(frozen=True)
class DetectedType:
    """Canonical classification of a file's content."""

    mime: str
    kind: MediaKind
    extension: str | None = None

    @property
    def known(self) -> bool:
        return self.mime != UNKNOWN_MIME


UNKNOWN = DetectedType(mime=UNKNOWN_MIME, kind=MediaKind.OTHER)


def _looks_like_text(head: bytes) -> bool:
    if not head or b"\x00" in head:
        return False
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as e:
        # A multi-byte sequence cut off by the prefix boundary is still text.
        return e.start >= len(head) - _UTF8_MAX_SEQUENCE and e.reason == "unexpected end of data"
    return True


def _sniff_text(head: bytes) -> str | None:
    if not _looks_like_text(head):
        return None
    if head.lstrip().lower().startswith(_HTML_PREFIXES):
        return "text/html"
    return "text/plain"


def classify(head: bytes, path: Path | None = None) -> DetectedType:
    """Classify a byte prefix; ``path`` only refines generic ZIP and text content."""
    guessed = filetype.guess(head) if head else None
    mime = canonical_mime(guessed.mime) if guessed is not None else _sniff_text(head)

    if mime is None:
        return UNKNOWN

    ext = normalize_extension(path) if path is not None else None
    if mime == ZIP_MIME and ext in ZIP_OFFICE_EXTENSIONS:
        mime = FORMATS[ext].mime
    elif mime == "text/plain" and ext in FORMATS and FORMATS[ext].mime.startswith("text/"):
        # Plain text carries no signature; csv and friends are told apart by name.
        mime = FORMATS[ext].mime

    spec = FORMATS_BY_MIME.get(mime)
    return DetectedType(mime=mime, kind=kind_for_mime(mime), extension=spec.extension if spec else None)


def detect(path: Path) -> DetectedType:
    """Detect the content type of ``path`` without trusting its extension."""
    try:
        with path.open("rb") as f:
            head = f.read(SNIFF_BYTES)
    except OSError as e:
        msg = f"Cannot read {path}: {e.strerror or e}"
        raise DetectionFailure(msg, file_path=path, cause=e) from e

    detected = classify(head, path)
    LOG.debug("Detected %s as %s", path, detected.mime)
    return detected

"""FFprobe integration: media stream inspection."""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .base import ProbeUnavailable
from .tools import FFPROBE, ToolRegistry

if TYPE_CHECKING:
    from pathlib import Path

LOG = logging.getLogger(__name__)

PROBE_TIMEOUT = 30
STREAM_KINDS = ("video", "audio")


@dataclass(frozen=True)
class StreamInfo:
    """One elementary stream as reported by ffprobe."""

    kind: str
    codec: str | None
    bitrate: int | None = None


@dataclass(frozen=True)
class MediaInfo:
    """Container format, ordered streams and duration of a media file."""

    container: str | None
    streams: tuple[StreamInfo, ...] = ()
    duration: float | None = None

    @property
    def video_streams(self) -> tuple[StreamInfo, ...]:
        return tuple(s for s in self.streams if s.kind == "video")

    @property
    def audio_streams(self) -> tuple[StreamInfo, ...]:
        return tuple(s for s in self.streams if s.kind == "audio")

    def to_dict(self) -> dict[str, Any]:
        return {
            "container": self.container,
            "duration": self.duration,
            "streams": [{"kind": s.kind, "codec": s.codec, "bitrate": s.bitrate} for s in self.streams],
        }


def _parse_float(value: object) -> float | None:
    if value is None:
        return None
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return parsed if parsed >= 0 else None


def _parse_int(value: object) -> int | None:
    if value is None:
        return None
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return None


def parse_probe_output(data: dict[str, Any]) -> MediaInfo:
    """Build :class:`MediaInfo` from ffprobe's JSON document.

    Every field is optional; partial data yields a partial record.
    """
    if not isinstance(data, dict):
        msg = "ffprobe output is not a JSON object"
        raise ProbeUnavailable(msg)

    format_info = data.get("format") or {}
    streams = []
    for stream in data.get("streams") or []:
        if not isinstance(stream, dict):
            continue
        codec_type = stream.get("codec_type")
        streams.append(
            StreamInfo(
                kind=codec_type if codec_type in STREAM_KINDS else "other",
                codec=stream.get("codec_name"),
                bitrate=_parse_int(stream.get("bit_rate")),
            )
        )

    duration = _parse_float(format_info.get("duration"))
    if duration is None:
        stream_durations = [_parse_float(s.get("duration")) for s in data.get("streams") or [] if isinstance(s, dict)]
        known = [d for d in stream_durations if d is not None]
        duration = max(known) if known else None

    return MediaInfo(
        container=format_info.get("format_name"),
        streams=tuple(streams),
        duration=duration,
    )


class MediaProber:
    """Runs ffprobe and turns its JSON into :class:`MediaInfo`.

    Absence of ffprobe, a failing run or unparsable output all produce
    ``None``; probing never aborts the pipeline.
    """

    def __init__(self, registry: ToolRegistry | None = None, timeout: int = PROBE_TIMEOUT) -> None:
        self.registry = registry or ToolRegistry()
        self.timeout = timeout
        self._cache: dict[tuple[Path, float, int], MediaInfo] = {}

    def probe(self, path: Path) -> MediaInfo | None:
        try:
            return self._probe(path)
        except ProbeUnavailable as e:
            LOG.warning("Media probe unavailable for %s: %s", path, e)
            return None

    def _cache_key(self, path: Path) -> tuple[Path, float, int] | None:
        try:
            stat = path.stat()
        except OSError:
            return None
        return (path, stat.st_mtime, stat.st_size)

    def _probe(self, path: Path) -> MediaInfo:
        cache_key = self._cache_key(path)
        if cache_key is not None and cache_key in self._cache:
            return self._cache[cache_key]

        found = self.registry.find(FFPROBE)
        if found is None:
            msg = f"ffprobe not found; {FFPROBE.hint}"
            raise ProbeUnavailable(msg, file_path=path)

        cmd = [
            found[1],
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

        try:
            result = subprocess.run(  # noqa: S603
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
                encoding="utf-8",
                errors="replace",
                stdin=subprocess.DEVNULL,
            )
            info = parse_probe_output(json.loads(result.stdout))
        except subprocess.CalledProcessError as e:
            error_details = (e.stderr or e.stdout or "no error output").strip()
            msg = f"ffprobe exited with status {e.returncode}: {error_details}"
            raise ProbeUnavailable(msg, file_path=path, cause=e) from e
        except subprocess.TimeoutExpired as e:
            msg = f"ffprobe timed out after {self.timeout}s"
            raise ProbeUnavailable(msg, file_path=path, cause=e) from e
        except json.JSONDecodeError as e:
            msg = f"invalid JSON from ffprobe: {e}"
            raise ProbeUnavailable(msg, file_path=path, cause=e) from e
        except OSError as e:
            msg = f"failed to execute ffprobe: {e}"
            raise ProbeUnavailable(msg, file_path=path, cause=e) from e

        if cache_key is not None:
            self._cache[cache_key] = info
        LOG.debug("Probed %s: %s", path, info)
        return info

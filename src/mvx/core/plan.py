"""Strategy selection and plan rendering.

Everything in this module is pure: building or rendering a plan never touches
the filesystem or starts a process. The executor consumes exactly the
argument list rendered in the command preview.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shlex
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .base import (
    ConflictingOptions,
    InvalidOptionValue,
    MediaMode,
    Strategy,
    UnsupportedConversion,
)
from .formats import (
    FORMATS_BY_MIME,
    MULTI_FRAME_SOURCES,
    SINGLE_FRAME_OUTPUTS,
    FormatSpec,
    MediaKind,
    format_for_extension,
    is_document_output,
    normalize_extension,
)
from .tools import FFMPEG, IMAGEMAGICK, LIBREOFFICE, ToolRegistry, ToolSpec

if TYPE_CHECKING:
    from ..config.settings import ContainerCompatibility, EncoderDefaults, OptionProfile
    from .detect import DetectedType
    from .ffmpeg import MediaInfo

LOG = logging.getLogger(__name__)

X264_PRESETS = (
    "ultrafast",
    "superfast",
    "veryfast",
    "faster",
    "fast",
    "medium",
    "slow",
    "slower",
    "veryslow",
)
PRESET_ENCODERS = frozenset({"libx264", "libx265"})
BITRATE_PATTERN = re.compile(r"^\d+[kKmM]?$")
MIN_IMAGE_QUALITY = 1
MAX_IMAGE_QUALITY = 100
DEFAULT_PDF_DENSITY = 150

# Placeholders filled in by the executor once temporary paths exist.
OUTPUT = "{output}"
WORK_DIR = "{work_dir}"
PROFILE_ARG = "{profile_arg}"
PREVIEW_OUTPUT_NAME = ".mvx-XXXXXXXX"

AV_KINDS = (MediaKind.AUDIO, MediaKind.VIDEO)
PDF_MIME = "application/pdf"


@dataclass(frozen=True)
class ConversionOptions:
    """Flags requested for one invocation."""

    image_quality: int | None = None
    video_bitrate: str | None = None
    audio_bitrate: str | None = None
    preset: str | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    stream_copy: bool = False
    transcode: bool = False
    overwrite: bool = False
    backup: bool = False
    move_source: bool = False
    default_media_mode: MediaMode = MediaMode.AUTO

    @property
    def media_mode(self) -> MediaMode:
        if self.stream_copy:
            return MediaMode.STREAM_COPY
        if self.transcode:
            return MediaMode.TRANSCODE
        return self.default_media_mode

    def with_profile(self, profile: OptionProfile) -> ConversionOptions:
        """Fill unset values from a configuration profile."""
        values: dict[str, Any] = {}
        for name in ("image_quality", "video_bitrate", "audio_bitrate", "preset", "video_codec", "audio_codec"):
            if getattr(self, name) is None and getattr(profile, name) is not None:
                values[name] = getattr(profile, name)
        if profile.media_mode is not None:
            values["default_media_mode"] = profile.media_mode
        return replace(self, **values)

    def validated(self) -> ConversionOptions:
        """Reject conflicting or malformed values; return a normalized copy."""
        if self.stream_copy and self.transcode:
            msg = "--stream-copy and --transcode are mutually exclusive"
            raise ConflictingOptions(msg)
        if self.overwrite and self.backup:
            msg = "--overwrite and --backup are mutually exclusive"
            raise ConflictingOptions(msg)

        values: dict[str, Any] = {}
        if self.image_quality is not None:
            values["image_quality"] = _validate_quality(self.image_quality)
        for name in ("video_bitrate", "audio_bitrate"):
            bitrate = getattr(self, name)
            if bitrate is not None and not BITRATE_PATTERN.match(str(bitrate)):
                label = name.replace("_", " ")
                msg = f"invalid {label} '{bitrate}': must be numeric with optional k/m suffix"
                raise InvalidOptionValue(msg)
        if self.preset is not None:
            preset = str(self.preset).lower()
            if preset not in X264_PRESETS:
                msg = f"preset must be one of: {', '.join(X264_PRESETS)}"
                raise InvalidOptionValue(msg)
            values["preset"] = preset
        for name in ("video_codec", "audio_codec"):
            codec = getattr(self, name)
            if codec is not None:
                if not str(codec).strip():
                    label = name.replace("_", " ")
                    msg = f"{label} must be a non-empty string"
                    raise InvalidOptionValue(msg)
                values[name] = str(codec).strip()
        return replace(self, **values)

    def requested_media_flags(self) -> dict[str, Any]:
        names = ("video_bitrate", "audio_bitrate", "preset", "video_codec", "audio_codec")
        return {name: getattr(self, name) for name in names if getattr(self, name) is not None}


def _validate_quality(value: object) -> int:
    try:
        quality = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as e:
        msg = f"image quality must be an integer, got '{value}'"
        raise InvalidOptionValue(msg, cause=e) from e
    if isinstance(value, bool) or not MIN_IMAGE_QUALITY <= quality <= MAX_IMAGE_QUALITY:
        msg = f"image quality must be between {MIN_IMAGE_QUALITY} and {MAX_IMAGE_QUALITY}"
        raise InvalidOptionValue(msg)
    return quality


@dataclass(frozen=True)
class ResolvedParameters:
    """Conversion parameters after flags, profile and format defaults are merged."""

    video_codec: str | None = None
    audio_codec: str | None = None
    video_bitrate: str | None = None
    audio_bitrate: str | None = None
    preset: str | None = None
    image_quality: int | None = None
    page: int | None = None
    density: int | None = None
    target_format: str | None = None
    stream_copy: bool = False
    drop_video: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) not in (None, False)}


@dataclass(frozen=True)
class Backend:
    """External tool selected for a plan plus its argument template."""

    tool: str
    executable: str
    arguments: tuple[str, ...]
    reports_progress: bool = False
    needs_work_dir: bool = False

    def command(self, output: Path, work_dir: Path | None = None) -> list[str]:
        """Concrete argument vector writing to ``output``."""
        argv = [self.executable]
        for arg in self.arguments:
            if arg == OUTPUT:
                argv.append(str(output))
            elif arg == WORK_DIR:
                argv.append(str(work_dir if work_dir is not None else output.parent))
            elif arg == PROFILE_ARG:
                profile_dir = (work_dir if work_dir is not None else output.parent) / "profile"
                argv.append(f"-env:UserInstallation={_file_uri(profile_dir)}")
            else:
                argv.append(arg)
        return argv


def _file_uri(path: Path) -> str:
    return Path(os.path.abspath(path)).as_uri()


@dataclass(frozen=True)
class Plan:
    """Immutable record of everything a conversion will do."""

    source: Path
    destination: Path
    detected: DetectedType
    destination_ext: str | None
    destination_kind: MediaKind
    strategy: Strategy
    backend: Backend | None
    parameters: ResolvedParameters
    media_mode: MediaMode = MediaMode.AUTO
    overwrite: bool = False
    backup: bool = False
    move_source: bool = False
    media_info: MediaInfo | None = None
    notes: tuple[str, ...] = ()

    def preview_paths(self) -> tuple[Path, Path]:
        """Stand-ins for the temporary output and work directory."""
        suffix = f".{self.destination_ext}" if self.destination_ext else ".out"
        parent = self.destination.parent
        return parent / f"{PREVIEW_OUTPUT_NAME}{suffix}", parent / PREVIEW_OUTPUT_NAME

    @property
    def command_preview(self) -> str | None:
        if self.backend is None:
            return None
        output, work_dir = self.preview_paths()
        return shlex.join(self.backend.command(output, work_dir))

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": str(self.source),
            "destination": str(self.destination),
            "detected_mime": self.detected.mime,
            "detected_extension": self.detected.extension,
            "strategy": self.strategy.value,
            "backend": self.backend.tool if self.backend else None,
            "destination_kind": self.destination_kind.value,
            "destination_extension": self.destination_ext,
            "media_mode": self.media_mode.value,
            "parameters": self.parameters.to_dict(),
            "overwrite": self.overwrite,
            "backup": self.backup,
            "move_source": self.move_source,
            "media_info": self.media_info.to_dict() if self.media_info else None,
            "command_preview": self.command_preview,
            "notes": list(self.notes),
        }


def render_plan(plan: Plan) -> str:
    """Human-readable plan preview."""
    lines = [
        f"Source: {plan.source}",
        f"Destination: {plan.destination}",
        f"Detected: {plan.detected.mime}",
        f"Strategy: {plan.strategy.value}",
    ]
    if plan.destination_ext:
        lines.append(f"Destination extension: {plan.destination_ext}")
    lines.append(f"Destination kind: {plan.destination_kind.value}")
    if plan.backend is not None:
        lines.append(f"Backend: {plan.backend.tool}")
    if plan.media_info is not None:
        codecs = ", ".join(f"{s.kind}:{s.codec or '?'}" for s in plan.media_info.streams) or "none"
        lines.append(f"Streams: {codecs}")
        if plan.media_info.duration is not None:
            lines.append(f"Duration: {plan.media_info.duration:.2f}s")
    labels = {
        "video_codec": "Video codec",
        "audio_codec": "Audio codec",
        "video_bitrate": "Video bitrate",
        "audio_bitrate": "Audio bitrate",
        "preset": "Preset",
        "image_quality": "Image quality",
        "page": "Page",
        "density": "Density",
        "target_format": "Target format",
    }
    params = plan.parameters.to_dict()
    lines.extend(f"{label}: {params[key]}" for key, label in labels.items() if key in params)
    if plan.backend is not None and plan.backend.tool == FFMPEG.name:
        lines.append(f"FFmpeg mode: {plan.media_mode.value}")
    lines.append(f"Command preview: {plan.command_preview or 'none (no external process)'}")
    lines.append(f"Overwrite: {'yes' if plan.overwrite else 'no'}")
    lines.append(f"Backup: {'yes' if plan.backup else 'no'}")
    lines.append(f"Move source: {'yes' if plan.move_source else 'no'}")
    lines.extend(f"Note: {note}" for note in plan.notes)
    return "\n".join(lines)


def render_plan_json(plan: Plan | list[Plan]) -> str:
    if isinstance(plan, list):
        return json.dumps([p.to_dict() for p in plan], indent=2)
    return json.dumps(plan.to_dict(), indent=2)


def same_file_path(a: Path, b: Path) -> bool:
    return os.path.normcase(os.path.abspath(a)) == os.path.normcase(os.path.abspath(b))


def ensure_distinct_paths(source: Path, destination: Path) -> None:
    if same_file_path(source, destination):
        msg = "source and destination must differ"
        raise InvalidOptionValue(msg, file_path=source)


class PlanBuilder:
    """Turns (source, destination, detected type, media info, flags) into a :class:`Plan`.

    The compatibility and encoder tables are configuration data; by default
    the built-in tables from :mod:`mvx.config.settings` are used.
    """

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        compatibility: dict[str, ContainerCompatibility] | None = None,
        encoders: dict[str, EncoderDefaults] | None = None,
        pdf_density: int = DEFAULT_PDF_DENSITY,
    ) -> None:
        from ..config.settings import EncoderDefaults, default_compatibility, default_encoders

        if compatibility is None:
            compatibility = default_compatibility()
        if encoders is None:
            encoders = default_encoders()
        self.registry = registry
        self.compatibility = compatibility
        self.encoders = encoders
        self.pdf_density = pdf_density
        self._no_defaults = EncoderDefaults()

    def build(
        self,
        source: Path,
        destination: Path,
        detected: DetectedType,
        media_info: MediaInfo | None,
        options: ConversionOptions,
    ) -> Plan:
        options = options.validated()
        ensure_distinct_paths(source, destination)

        source_ext = normalize_extension(source)
        dest_ext = normalize_extension(destination)
        dest_spec = format_for_extension(dest_ext)
        dest_kind = dest_spec.kind if dest_spec else MediaKind.OTHER
        notes: list[str] = []

        strategy = self._choose_strategy(detected, source_ext, dest_ext, dest_spec, media_info, options, notes)

        if strategy == Strategy.RENAME:
            backend, params = None, ResolvedParameters()
            if options.image_quality is not None or options.requested_media_flags():
                notes.append("conversion options ignored for rename")
        elif strategy in (Strategy.REMUX, Strategy.TRANSCODE):
            backend, params = self._media_backend(source, dest_ext, dest_kind, strategy, options, notes)
        elif dest_spec is not None and dest_spec.kind == MediaKind.DOCUMENT and detected.kind != MediaKind.IMAGE:
            backend, params = self._document_backend(source, dest_spec, options, notes)
        else:
            backend, params = self._image_backend(source, detected, dest_ext, options, notes)

        if strategy not in (Strategy.REMUX, Strategy.TRANSCODE) and options.media_mode != MediaMode.AUTO:
            notes.append(f"{options.media_mode.value} preference ignored for non-media conversion")
        if not options.move_source:
            notes.append("source will be kept")

        plan = Plan(
            source=source,
            destination=destination,
            detected=detected,
            destination_ext=dest_ext,
            destination_kind=dest_kind,
            strategy=strategy,
            backend=backend,
            parameters=params,
            media_mode=options.media_mode,
            overwrite=options.overwrite,
            backup=options.backup,
            move_source=options.move_source,
            media_info=media_info,
            notes=tuple(notes),
        )
        LOG.debug("Planned %s -> %s: %s", source, destination, strategy.value)
        return plan

    def _choose_strategy(
        self,
        detected: DetectedType,
        source_ext: str | None,
        dest_ext: str | None,
        dest_spec: FormatSpec | None,
        media_info: MediaInfo | None,
        options: ConversionOptions,
        notes: list[str],
    ) -> Strategy:
        # 1. Same canonical format: no backend at all.
        if dest_spec is not None and detected.known and dest_spec.mime == detected.mime:
            return Strategy.RENAME
        if source_ext == dest_ext and (not detected.known or dest_spec is None):
            return Strategy.RENAME

        if dest_spec is None:
            what = f".{dest_ext}" if dest_ext else "a destination without extension"
            msg = f"no backend converts {detected.mime} to {what}"
            raise UnsupportedConversion(msg)

        # 2. Audio/video containers on both sides.
        if detected.known and detected.kind in AV_KINDS and dest_spec.kind in AV_KINDS:
            return self._remux_or_transcode(dest_spec.extension, media_info, options, notes)

        source_spec = self._source_spec(detected, source_ext)

        # 3. Office/text documents through the document backend.
        if is_document_output(source_spec, dest_spec):
            return Strategy.CONVERT

        # 4. Images from images or from the first page of a PDF; images into PDF.
        if detected.known and dest_spec.kind == MediaKind.IMAGE and (
            detected.kind == MediaKind.IMAGE or detected.mime == PDF_MIME
        ):
            return Strategy.CONVERT
        if detected.known and dest_spec.extension == "pdf" and detected.kind == MediaKind.IMAGE:
            return Strategy.CONVERT

        msg = f"no backend converts {detected.mime} to .{dest_spec.extension}"
        raise UnsupportedConversion(msg)

    @staticmethod
    def _source_spec(detected: DetectedType, source_ext: str | None) -> FormatSpec | None:
        if detected.known:
            return FORMATS_BY_MIME.get(detected.mime)
        # Unknown bytes may still go to the document backend when named like a document.
        spec = format_for_extension(source_ext)
        return spec if spec is not None and spec.kind == MediaKind.DOCUMENT else None

    def _remux_or_transcode(
        self,
        dest_ext: str,
        media_info: MediaInfo | None,
        options: ConversionOptions,
        notes: list[str],
    ) -> Strategy:
        mode = options.media_mode
        if mode == MediaMode.TRANSCODE:
            return Strategy.TRANSCODE
        if mode == MediaMode.STREAM_COPY:
            notes.append("stream copy forced; the backend may reject incompatible streams")
            return Strategy.REMUX

        if media_info is None:
            notes.append("media probe unavailable; transcoding instead of stream copy")
            return Strategy.TRANSCODE

        table = self.compatibility.get(dest_ext)
        if table is None:
            notes.append(f"no stream-copy table for .{dest_ext}; transcoding")
            return Strategy.TRANSCODE

        av_streams = [s for s in media_info.streams if s.kind in ("video", "audio")]
        if not av_streams:
            notes.append("no audio/video streams reported; transcoding")
            return Strategy.TRANSCODE

        rejected = [s for s in av_streams if not table.accepts(s.kind, s.codec)]
        if rejected:
            codecs = ", ".join(f"{s.kind}:{s.codec or 'unknown'}" for s in rejected)
            notes.append(f"streams not copyable into .{dest_ext} ({codecs}); transcoding")
            return Strategy.TRANSCODE

        notes.append(f"all streams compatible with .{dest_ext}; copying without re-encode")
        return Strategy.REMUX

    def _executable(self, tool: ToolSpec) -> str:
        if self.registry is None:
            return tool.candidates[0]
        return self.registry.preferred_executable(tool)

    def _media_backend(
        self,
        source: Path,
        dest_ext: str | None,
        dest_kind: MediaKind,
        strategy: Strategy,
        options: ConversionOptions,
        notes: list[str],
    ) -> tuple[Backend, ResolvedParameters]:
        defaults = self.encoders.get(dest_ext or "") or self._no_defaults
        args: list[str] = ["-nostdin", "-y", "-hide_banner", "-nostats", "-loglevel", "error", "-i", str(source)]

        if options.image_quality is not None:
            notes.append("image quality ignored for non-image output")

        if strategy == Strategy.REMUX:
            for name, value in options.requested_media_flags().items():
                notes.append(f"{name.replace('_', ' ')} ignored when stream copy is selected")
                LOG.debug("Dropping %s=%s for stream copy", name, value)
            params = ResolvedParameters(stream_copy=True)
            args += ["-map", "0:v?", "-map", "0:a?", "-c", "copy"]
        elif dest_kind == MediaKind.VIDEO:
            video_codec = options.video_codec or defaults.video_codec
            preset = options.preset or defaults.preset
            if preset is not None and video_codec not in PRESET_ENCODERS:
                if options.preset is not None:
                    notes.append(f"preset ignored for video codec {video_codec}")
                preset = None
            params = ResolvedParameters(
                video_codec=video_codec,
                audio_codec=options.audio_codec or defaults.audio_codec,
                video_bitrate=options.video_bitrate or defaults.video_bitrate,
                audio_bitrate=options.audio_bitrate or defaults.audio_bitrate,
                preset=preset,
            )
            if params.video_codec:
                args += ["-c:v", params.video_codec]
            if params.video_bitrate:
                args += ["-b:v", params.video_bitrate]
            if params.preset:
                args += ["-preset", params.preset]
            if params.audio_codec:
                args += ["-c:a", params.audio_codec]
            if params.audio_bitrate:
                args += ["-b:a", params.audio_bitrate]
        else:
            if options.video_bitrate is not None:
                notes.append("video bitrate ignored for audio-only output")
            if options.video_codec is not None:
                notes.append("video codec ignored for audio-only output")
            if options.preset is not None:
                notes.append("preset ignored for audio-only output")
            params = ResolvedParameters(
                audio_codec=options.audio_codec or defaults.audio_codec,
                audio_bitrate=options.audio_bitrate or defaults.audio_bitrate,
                drop_video=True,
            )
            args.append("-vn")
            if params.audio_codec:
                args += ["-c:a", params.audio_codec]
            if params.audio_bitrate:
                args += ["-b:a", params.audio_bitrate]

        args += ["-progress", "pipe:1", OUTPUT]
        backend = Backend(
            tool=FFMPEG.name,
            executable=self._executable(FFMPEG),
            arguments=tuple(args),
            reports_progress=True,
        )
        return backend, params

    def _image_backend(
        self,
        source: Path,
        detected: DetectedType,
        dest_ext: str | None,
        options: ConversionOptions,
        notes: list[str],
    ) -> tuple[Backend, ResolvedParameters]:
        defaults = self.encoders.get(dest_ext or "") or self._no_defaults
        for name in options.requested_media_flags():
            notes.append(f"{name.replace('_', ' ')} ignored for image output")

        source_ext = detected.extension
        page = None
        if source_ext == "pdf" or (source_ext in MULTI_FRAME_SOURCES and dest_ext in SINGLE_FRAME_OUTPUTS):
            page = 0
            notes.append("only the first page/frame is converted")
        density = self.pdf_density if source_ext == "pdf" else None
        quality = options.image_quality if options.image_quality is not None else defaults.image_quality

        args: list[str] = []
        if density is not None:
            args += ["-density", str(density)]
        args.append(f"{source}[{page}]" if page is not None else str(source))
        if quality is not None:
            args += ["-quality", str(quality)]
        args.append(OUTPUT)

        backend = Backend(tool=IMAGEMAGICK.name, executable=self._executable(IMAGEMAGICK), arguments=tuple(args))
        return backend, ResolvedParameters(image_quality=quality, page=page, density=density)

    def _document_backend(
        self,
        source: Path,
        dest_spec: FormatSpec,
        options: ConversionOptions,
        notes: list[str],
    ) -> tuple[Backend, ResolvedParameters]:
        if options.image_quality is not None or options.requested_media_flags():
            notes.append("media options ignored for document conversions")
        args = ("--headless", PROFILE_ARG, "--convert-to", dest_spec.extension, "--outdir", WORK_DIR, str(source))
        backend = Backend(
            tool=LIBREOFFICE.name,
            executable=self._executable(LIBREOFFICE),
            arguments=args,
            needs_work_dir=True,
        )
        return backend, ResolvedParameters(target_format=dest_spec.extension)


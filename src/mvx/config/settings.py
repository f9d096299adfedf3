"""Configuration management for mvx."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from ..core.base import ConfigError, InvalidOptionValue, MediaMode
from ..core.plan import ConversionOptions
from .constants import CONFIG_DIR_NAME, CONFIG_FILE_NAME

LOG = logging.getLogger(__name__)

WILDCARD = "*"
OPTION_KEYS = ("image_quality", "video_bitrate", "audio_bitrate", "preset", "video_codec", "audio_codec")


@dataclass(frozen=True)
class ContainerCompatibility:
    """Codecs a container accepts without re-encoding."""

    video: frozenset[str] = frozenset()
    audio: frozenset[str] = frozenset()

    def accepts(self, kind: str, codec: str | None) -> bool:
        if codec is None:
            return False
        allowed = self.video if kind == "video" else self.audio if kind == "audio" else frozenset()
        return WILDCARD in allowed or codec.lower() in allowed


@dataclass(frozen=True)
class EncoderDefaults:
    """Per-output defaults used when no flag or profile sets a value."""

    video_codec: str | None = None
    audio_codec: str | None = None
    video_bitrate: str | None = None
    audio_bitrate: str | None = None
    preset: str | None = None
    image_quality: int | None = None


@dataclass(frozen=True)
class OptionProfile:
    """A named set of option values (the ``defaults`` section or a profile)."""

    image_quality: int | None = None
    video_bitrate: str | None = None
    audio_bitrate: str | None = None
    preset: str | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    media_mode: MediaMode | None = None

    def merged_over(self, base: OptionProfile) -> OptionProfile:
        """This profile's values, falling back to ``base`` for unset ones."""
        values = {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}
        return replace(base, **values)


def _mp4_family() -> ContainerCompatibility:
    return ContainerCompatibility(
        video=frozenset({"h264", "hevc", "mpeg4", "av1"}),
        audio=frozenset({"aac", "mp3", "alac"}),
    )


def default_compatibility() -> dict[str, ContainerCompatibility]:
    """Stream-copy allow-lists; containers missing here always transcode."""
    return {
        "mp4": _mp4_family(),
        "mov": _mp4_family(),
        "m4v": _mp4_family(),
        "webm": ContainerCompatibility(
            video=frozenset({"vp8", "vp9", "av1"}),
            audio=frozenset({"opus", "vorbis"}),
        ),
        "mkv": ContainerCompatibility(video=frozenset({WILDCARD}), audio=frozenset({WILDCARD})),
    }


def default_encoders() -> dict[str, EncoderDefaults]:
    x264 = EncoderDefaults(video_codec="libx264", audio_codec="aac")
    return {
        "mp4": x264,
        "mov": x264,
        "m4v": x264,
        "mkv": x264,
        "avi": x264,
        "webm": EncoderDefaults(video_codec="libvpx-vp9", audio_codec="libopus"),
        "mp3": EncoderDefaults(audio_codec="libmp3lame", audio_bitrate="192k"),
        "flac": EncoderDefaults(audio_codec="flac"),
        "wav": EncoderDefaults(audio_codec="pcm_s16le"),
        "opus": EncoderDefaults(audio_codec="libopus", audio_bitrate="128k"),
        "ogg": EncoderDefaults(audio_codec="libvorbis", audio_bitrate="192k"),
        "m4a": EncoderDefaults(audio_codec="aac", audio_bitrate="192k"),
        "aac": EncoderDefaults(audio_codec="aac", audio_bitrate="192k"),
        "jpg": EncoderDefaults(image_quality=90),
        "webp": EncoderDefaults(image_quality=90),
        "avif": EncoderDefaults(image_quality=90),
        "heic": EncoderDefaults(image_quality=90),
    }


@dataclass
class GlobalConfig:
    """Global settings."""

    workers: int | None = None
    timeout: float | None = None
    log_level: str = "WARNING"
    progress: bool = True
    pdf_density: int = 150


@dataclass
class MvxConfig:
    """Main configuration class."""

    global_: GlobalConfig = field(default_factory=GlobalConfig)
    defaults: OptionProfile = field(default_factory=OptionProfile)
    profiles: dict[str, OptionProfile] = field(default_factory=dict)
    compatibility: dict[str, ContainerCompatibility] = field(default_factory=default_compatibility)
    encoders: dict[str, EncoderDefaults] = field(default_factory=default_encoders)

    @classmethod
    def load_from_file(cls, config_path: Path) -> MvxConfig:
        """Load configuration from a YAML file."""
        try:
            with config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            msg = f"Cannot read config file {config_path}: {e}"
            raise ConfigError(msg, file_path=config_path, cause=e) from e
        except yaml.YAMLError as e:
            msg = f"Cannot parse config file {config_path}: {e}"
            raise ConfigError(msg, file_path=config_path, cause=e) from e

        if data is None:
            return cls()
        if not isinstance(data, dict):
            msg = f"Config file {config_path} must contain a mapping"
            raise ConfigError(msg, file_path=config_path)
        return cls._from_dict(data, config_path)

    def list_profiles(self) -> list[str]:
        return sorted(self.profiles)

    def options_for(self, profile_name: str | None = None) -> OptionProfile:
        """The ``defaults`` section with ``profile_name`` applied on top."""
        if profile_name is None:
            return self.defaults
        if profile_name not in self.profiles:
            available = ", ".join(self.list_profiles()) or "none"
            msg = f"Unknown profile '{profile_name}'. Available: {available}"
            raise InvalidOptionValue(msg)
        return self.profiles[profile_name].merged_over(self.defaults)

    @classmethod
    def _from_dict(cls, data: dict[str, Any], source: Path) -> MvxConfig:
        defaults = cls._parse_profile(data.get("defaults") or {}, "defaults", source)
        profiles = {
            str(name): cls._parse_profile(values or {}, f"profiles.{name}", source)
            for name, values in (data.get("profiles") or {}).items()
        }

        compatibility = default_compatibility()
        for container, values in (data.get("compatibility") or {}).items():
            if not isinstance(values, dict):
                LOG.warning("Ignoring compatibility entry for '%s': expected a mapping", container)
                continue
            compatibility[str(container).lower().lstrip(".")] = ContainerCompatibility(
                video=frozenset(str(c).lower() for c in values.get("video") or ()),
                audio=frozenset(str(c).lower() for c in values.get("audio") or ()),
            )

        encoders = default_encoders()
        for ext, values in (data.get("encoders") or {}).items():
            if not isinstance(values, dict):
                LOG.warning("Ignoring encoder defaults for '%s': expected a mapping", ext)
                continue
            key = str(ext).lower().lstrip(".")
            base = encoders.get(key, EncoderDefaults())
            known = _checked_options(values, f"encoders.{key}", source)
            unknown = set(values) - set(OPTION_KEYS)
            if unknown:
                LOG.warning("Ignoring unknown encoder keys for '%s': %s", key, ", ".join(sorted(unknown)))
            encoders[key] = replace(base, **known)

        return cls(
            global_=cls._parse_global(data.get("global") or {}, source),
            defaults=defaults,
            profiles=profiles,
            compatibility=compatibility,
            encoders=encoders,
        )

    @classmethod
    def _parse_profile(cls, values: dict[str, Any], section: str, source: Path) -> OptionProfile:
        if not isinstance(values, dict):
            msg = f"Section '{section}' in {source} must be a mapping"
            raise ConfigError(msg, file_path=source)

        options = _checked_options(values, section, source)

        mode = values.get("ffmpeg_mode", values.get("ffmpeg_preference"))
        if mode is not None:
            options["media_mode"] = parse_media_mode(str(mode), section, source)

        unknown = set(values) - set(OPTION_KEYS) - {"ffmpeg_mode", "ffmpeg_preference"}
        if unknown:
            LOG.warning("Ignoring unknown keys in '%s': %s", section, ", ".join(sorted(unknown)))
        return OptionProfile(**options)

    @classmethod
    def _parse_global(cls, global_data: dict[str, Any], source: Path) -> GlobalConfig:
        if not isinstance(global_data, dict):
            msg = f"Section 'global' in {source} must be a mapping"
            raise ConfigError(msg, file_path=source)
        return GlobalConfig(
            workers=_positive_number(global_data.get("workers"), int, "global.workers", source),
            timeout=_positive_number(global_data.get("timeout"), float, "global.timeout", source),
            log_level=str(global_data.get("log_level", "WARNING")).upper(),
            progress=bool(global_data.get("progress", True)),
            pdf_density=_positive_number(global_data.get("pdf_density", 150), int, "global.pdf_density", source),
        )


def parse_media_mode(value: str, section: str = "options", source: Path | None = None) -> MediaMode:
    normalized = value.strip().lower().replace("_", "-")
    try:
        return MediaMode(normalized)
    except ValueError as e:
        valid = ", ".join(m.value for m in MediaMode)
        msg = f"Invalid ffmpeg_mode '{value}' in {section}. Valid options: {valid}"
        raise ConfigError(msg, file_path=source, cause=e) from e


def default_config_path() -> Path:
    """``$XDG_CONFIG_HOME/mvx/config.yaml``, falling back to ``~/.config``."""
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def load_config(config_path: Path | None = None) -> MvxConfig:
    """Load an explicit config file, or the default one when it exists."""
    if config_path is not None:
        if not config_path.exists():
            msg = f"Config file not found: {config_path}"
            raise ConfigError(msg, file_path=config_path)
        return MvxConfig.load_from_file(config_path)

    default_path = default_config_path()
    if default_path.exists():
        LOG.debug("Loading config from %s", default_path)
        return MvxConfig.load_from_file(default_path)
    return MvxConfig()


def _checked_options(values: dict[str, Any], section: str, source: Path) -> dict[str, Any]:
    """Option values from ``values`` as strings (quality as int), checked like CLI flags."""
    raw: dict[str, Any] = {}
    for key in OPTION_KEYS:
        value = values.get(key)
        if value is not None:
            raw[key] = value if key == "image_quality" else str(value)
    try:
        checked = ConversionOptions(**raw).validated()
    except InvalidOptionValue as e:
        msg = f"Invalid value in '{section}' of {source}: {e}"
        raise ConfigError(msg, file_path=source, cause=e) from e
    return {key: getattr(checked, key) for key in raw}


def _positive_number(value: Any, kind: type[int] | type[float], name: str, source: Path) -> Any:
    if value is None:
        return None
    msg = f"{name} in {source} must be a number, got '{value}'"
    if isinstance(value, bool):
        raise ConfigError(msg, file_path=source)
    try:
        number = kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(msg, file_path=source, cause=e) from e
    if number <= 0:
        msg = f"{name} in {source} must be positive, got '{value}'"
        raise ConfigError(msg, file_path=source)
    return number

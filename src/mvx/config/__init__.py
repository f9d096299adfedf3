"""Configuration management for mvx."""

from __future__ import annotations

from .constants import *  # noqa: F403, F401
from .settings import (
    ContainerCompatibility,
    EncoderDefaults,
    GlobalConfig,
    MvxConfig,
    OptionProfile,
    default_config_path,
    load_config,
)

__all__ = [
    "ContainerCompatibility",
    "EncoderDefaults",
    "GlobalConfig",
    "MvxConfig",
    "OptionProfile",
    "default_config_path",
    "load_config",
]

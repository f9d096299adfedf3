"""mvx - move or convert a file based on the destination extension."""

from __future__ import annotations

__version__ = "0.1.0"
__description__ = "Move or convert files based on the destination extension"

# Public API exports
from .config import MvxConfig, load_config
from .core import (
    ConversionOptions,
    Converter,
    ExecutionOutcome,
    ExitCode,
    MvxError,
    Plan,
    Strategy,
    ToolRegistry,
)

__all__ = [
    # Configuration
    "MvxConfig",
    "load_config",
    # Pipeline
    "Converter",
    "ConversionOptions",
    "Plan",
    "ToolRegistry",
    # Enums and results
    "ExecutionOutcome",
    "ExitCode",
    "Strategy",
    # Exceptions
    "MvxError",
]

"""Base types, result records and the error taxonomy shared by the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path


class ExitCode(IntEnum):
    """Process result codes, one per failure family."""

    SUCCESS = 0
    FAILURE = 1
    PLANNING = 2
    MISSING_TOOL = 3
    DESTINATION_EXISTS = 4
    BACKEND = 5
    IO = 6
    CANCELLED = 130


class Strategy(Enum):
    """How a plan gets from source to destination."""

    RENAME = "rename"
    REMUX = "remux"
    TRANSCODE = "transcode"
    CONVERT = "convert"


class MediaMode(Enum):
    """Requested remux/transcode behaviour for audio/video pairs."""

    AUTO = "auto"
    STREAM_COPY = "stream-copy"
    TRANSCODE = "transcode"


class ProcessingStatus(Enum):
    """Status of a single batch item."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class SourceDeleteWarning:
    """The conversion succeeded but the source could not be removed."""

    source: Path
    reason: str

    def __str__(self) -> str:
        return f"could not remove source {self.source}: {self.reason}"


@dataclass
class ExecutionOutcome:
    """Terminal result of a successful conversion."""

    source: Path
    destination: Path
    strategy: Strategy
    bytes_written: int
    backup_path: Path | None = None
    source_removed: bool = False
    warnings: list[SourceDeleteWarning] = field(default_factory=list)
    elapsed: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "source": str(self.source),
            "destination": str(self.destination),
            "strategy": self.strategy.value,
            "bytes_written": self.bytes_written,
            "backup": str(self.backup_path) if self.backup_path else None,
            "source_removed": self.source_removed,
            "warnings": [str(w) for w in self.warnings],
        }


class MvxError(Exception):
    """Base exception for every fatal pipeline condition."""

    exit_code: ExitCode = ExitCode.FAILURE
    kind = "error"

    def __init__(
        self,
        message: str,
        file_path: Path | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.file_path = file_path
        self.cause = cause


class DetectionFailure(MvxError):
    """The source could not be read for type detection."""

    exit_code = ExitCode.IO
    kind = "detection_failure"


class ConfigError(MvxError):
    """The configuration file is missing or malformed."""

    exit_code = ExitCode.PLANNING
    kind = "config_error"


class PlanningError(MvxError):
    """No valid plan can be built for the request."""

    exit_code = ExitCode.PLANNING
    kind = "planning_error"


class ConflictingOptions(PlanningError):
    """Two mutually exclusive options were both requested."""

    kind = "conflicting_options"


class InvalidOptionValue(PlanningError):
    """An option value is out of range or malformed."""

    kind = "invalid_option_value"


class UnsupportedConversion(PlanningError):
    """No backend handles the (source type, destination type) pair."""

    kind = "unsupported_conversion"


class ProbeUnavailable(MvxError):
    """Media inspection could not produce stream information.

    Never leaves the prober; it is converted into "no MediaInfo".
    """

    kind = "probe_unavailable"


class MissingTool(MvxError):
    """A backend executable is not installed."""

    exit_code = ExitCode.MISSING_TOOL
    kind = "missing_tool"

    def __init__(self, tool: str, hint: str, file_path: Path | None = None) -> None:
        super().__init__(f"{tool} not found; {hint}", file_path=file_path)
        self.tool = tool
        self.hint = hint


class ExecutionError(MvxError):
    """The backend did not produce an output."""

    exit_code = ExitCode.BACKEND
    kind = "execution_error"


class BackendFailed(ExecutionError):
    """The backend exited with a non-zero status."""

    kind = "backend_failed"

    def __init__(
        self,
        message: str,
        *,
        code: int,
        diagnostics: str = "",
        command: list[str] | None = None,
        file_path: Path | None = None,
    ) -> None:
        super().__init__(message, file_path=file_path)
        self.code = code
        self.diagnostics = diagnostics
        self.command = command


class BackendTimeout(ExecutionError):
    """The backend ran longer than the configured timeout."""

    kind = "backend_timeout"


class ExecutionCancelled(ExecutionError):
    """The run was interrupted by the user or a termination signal."""

    exit_code = ExitCode.CANCELLED
    kind = "cancelled"


class FinalizeError(MvxError):
    """The temporary output could not be published."""

    exit_code = ExitCode.IO
    kind = "finalize_error"


class EmptyOutput(FinalizeError):
    """The backend succeeded but wrote nothing."""

    exit_code = ExitCode.BACKEND
    kind = "empty_output"


class DestinationExists(FinalizeError):
    """The destination exists and neither overwrite nor backup was requested."""

    exit_code = ExitCode.DESTINATION_EXISTS
    kind = "destination_exists"


class FinalizeIOError(FinalizeError):
    """A filesystem operation during publish failed."""

    kind = "finalize_io_error"

"""Planning and safe-execution pipeline."""

from .base import (
    BackendFailed,
    BackendTimeout,
    ConfigError,
    ConflictingOptions,
    DestinationExists,
    DetectionFailure,
    EmptyOutput,
    ExecutionCancelled,
    ExecutionError,
    ExecutionOutcome,
    ExitCode,
    FinalizeError,
    FinalizeIOError,
    InvalidOptionValue,
    MediaMode,
    MissingTool,
    MvxError,
    PlanningError,
    ProbeUnavailable,
    ProcessingStatus,
    SourceDeleteWarning,
    Strategy,
    UnsupportedConversion,
)
from .batch import BatchJob, BatchRunner, BatchSummary, ProcessingResult, build_jobs, collect_sources
from .detect import DetectedType, detect
from .executor import Executor, TempOutput
from .ffmpeg import MediaInfo, MediaProber, StreamInfo
from .file_manager import FileManager
from .pipeline import Converter, resolve_options
from .plan import Backend, ConversionOptions, Plan, PlanBuilder, render_plan, render_plan_json
from .progress import ProgressEvent, ProgressParser
from .tools import ToolRegistry

__all__ = [
    "Backend",
    "BackendFailed",
    "BackendTimeout",
    "BatchJob",
    "BatchRunner",
    "BatchSummary",
    "ConfigError",
    "ConflictingOptions",
    "ConversionOptions",
    "Converter",
    "DestinationExists",
    "DetectedType",
    "DetectionFailure",
    "EmptyOutput",
    "ExecutionCancelled",
    "ExecutionError",
    "ExecutionOutcome",
    "Executor",
    "ExitCode",
    "FileManager",
    "FinalizeError",
    "FinalizeIOError",
    "InvalidOptionValue",
    "MediaInfo",
    "MediaMode",
    "MediaProber",
    "MissingTool",
    "MvxError",
    "Plan",
    "PlanBuilder",
    "PlanningError",
    "ProbeUnavailable",
    "ProcessingResult",
    "ProcessingStatus",
    "ProgressEvent",
    "ProgressParser",
    "SourceDeleteWarning",
    "StreamInfo",
    "Strategy",
    "TempOutput",
    "ToolRegistry",
    "UnsupportedConversion",
    "build_jobs",
    "collect_sources",
    "detect",
    "render_plan",
    "render_plan_json",
    "resolve_options",
]

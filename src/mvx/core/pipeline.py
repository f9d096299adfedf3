"""Single-conversion pipeline: detect, probe, plan, execute, finalize."""

from __future__ import annotations

import logging
import os
import threading
from typing import TYPE_CHECKING

from .base import DestinationExists, ExecutionOutcome
from .detect import detect
from .executor import Executor
from .ffmpeg import MediaProber
from .file_manager import FileManager, remove_quietly
from .formats import MediaKind, format_for_extension, normalize_extension
from .plan import ConversionOptions, Plan, PlanBuilder, ensure_distinct_paths
from .tools import ToolRegistry

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from ..config.settings import MvxConfig
    from .progress import ProgressEvent

LOG = logging.getLogger(__name__)

AV_KINDS = (MediaKind.AUDIO, MediaKind.VIDEO)


def resolve_options(options: ConversionOptions, config: MvxConfig, profile: str | None = None) -> ConversionOptions:
    """Apply ``profile`` and the ``defaults`` section under explicit flags."""
    return options.with_profile(config.options_for(profile))


class Converter:
    """Facade wiring the pipeline stages together for one source at a time."""

    def __init__(
        self,
        config: MvxConfig | None = None,
        registry: ToolRegistry | None = None,
        prober: MediaProber | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        if config is None:
            from ..config.settings import MvxConfig

            config = MvxConfig()
        self.config = config
        self.registry = registry or ToolRegistry()
        self.prober = prober or MediaProber(self.registry)
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self.builder = PlanBuilder(
            self.registry,
            compatibility=config.compatibility,
            encoders=config.encoders,
            pdf_density=config.global_.pdf_density,
        )
        self.executor = Executor(
            self.registry,
            timeout=timeout if timeout is not None else config.global_.timeout,
            cancel_event=self.cancel_event,
        )
        self.file_manager = FileManager()

    def plan(self, source: Path, destination: Path, options: ConversionOptions) -> Plan:
        """Build the plan without side effects beyond reading the source."""
        options = options.validated()
        ensure_distinct_paths(source, destination)

        detected = detect(source)
        media_info = None
        dest_spec = format_for_extension(normalize_extension(destination))
        if detected.known and detected.kind in AV_KINDS and dest_spec is not None and dest_spec.kind in AV_KINDS:
            media_info = self.prober.probe(source)
        return self.builder.build(source, destination, detected, media_info, options)

    def run(self, plan: Plan, on_progress: Callable[[ProgressEvent], None] | None = None) -> ExecutionOutcome:
        """Execute and finalize an already built plan."""
        if os.path.lexists(plan.destination) and not (plan.overwrite or plan.backup):
            msg = f"Destination already exists: {plan.destination} (use --overwrite or --backup)"
            raise DestinationExists(msg, file_path=plan.destination)

        temp = self.executor.execute(plan, on_progress)
        try:
            outcome = self.file_manager.finalize(temp.path, plan, temp.elapsed)
        except BaseException:
            remove_quietly(temp.path)
            raise
        LOG.info(
            "%s %s -> %s (%d bytes, %.2fs)",
            plan.strategy.value.capitalize(),
            plan.source,
            plan.destination,
            outcome.bytes_written,
            outcome.elapsed,
        )
        return outcome

    def convert(
        self,
        source: Path,
        destination: Path,
        options: ConversionOptions,
        on_progress: Callable[[ProgressEvent], None] | None = None,
    ) -> ExecutionOutcome:
        return self.run(self.plan(source, destination, options), on_progress)

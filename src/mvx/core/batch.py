"""Batch input expansion and bounded parallel conversion."""

from __future__ import annotations

import glob
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from tqdm import tqdm

from .base import ExitCode, InvalidOptionValue, MvxError, ProcessingStatus, Strategy
from .executor import TEMP_PREFIX
from .plan import same_file_path
from .workers import resolve_worker_count

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .pipeline import Converter
    from .plan import ConversionOptions, Plan

LOG = logging.getLogger(__name__)

GLOB_CHARS = frozenset("*?[")


@dataclass(frozen=True)
class BatchJob:
    """One source and the destination it converts to."""

    source: Path
    destination: Path


@dataclass
class ProcessingResult:
    """Result of one batch item."""

    source_file: Path
    status: ProcessingStatus
    message: str = ""
    output_file: Path | None = None
    strategy: Strategy | None = None
    bytes_written: int | None = None
    processing_time: float = 0.0
    error_kind: str | None = None
    exit_code: ExitCode = ExitCode.SUCCESS
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "status": self.status.value,
            "source": str(self.source_file),
            "destination": str(self.output_file) if self.output_file else None,
        }
        if self.strategy is not None:
            data["strategy"] = self.strategy.value
        if self.bytes_written is not None:
            data["bytes_written"] = self.bytes_written
        if self.message:
            data["message"] = self.message
        if self.error_kind:
            data["kind"] = self.error_kind
        if self.warnings:
            data["warnings"] = list(self.warnings)
        return data


@dataclass
class BatchSummary:
    """Aggregated outcome of a batch."""

    results: list[ProcessingResult] = field(default_factory=list)

    def _count(self, status: ProcessingStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(ProcessingStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return self._count(ProcessingStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(ProcessingStatus.SKIPPED)

    @property
    def failures(self) -> list[ProcessingResult]:
        return [r for r in self.results if r.status == ProcessingStatus.FAILED]

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.FAILURE if self.failed else ExitCode.SUCCESS

    def to_dict(self) -> dict[str, object]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
        }


def _is_candidate(path: Path) -> bool:
    return path.is_file() and not path.name.startswith(TEMP_PREFIX)


def collect_sources(inputs: Iterable[str], *, recursive: bool = False) -> list[Path]:
    """Expand files, directories and glob patterns into a sorted, deduplicated list."""
    found: set[Path] = set()
    for item in inputs:
        item = item.strip()
        if not item:
            continue
        if GLOB_CHARS & set(item):
            matches = [Path(m) for m in glob.glob(item, recursive=recursive)]
            if not matches:
                LOG.warning("No files match %s", item)
            found.update(m for m in matches if _is_candidate(m))
            continue

        path = Path(item)
        if path.is_dir():
            pattern = "**/*" if recursive else "*"
            found.update(p for p in path.glob(pattern) if _is_candidate(p))
        elif path.is_file():
            found.add(path)
        else:
            msg = f"Input does not exist: {item}"
            raise InvalidOptionValue(msg, file_path=path)

    LOG.info("Collected %d input files", len(found))
    return sorted(found)


def destination_for(source: Path, dest_dir: Path, to_ext: str | None = None) -> Path:
    if to_ext:
        return dest_dir / f"{source.stem}.{to_ext.lstrip('.')}"
    return dest_dir / source.name


def build_jobs(sources: Iterable[Path], dest_dir: Path, to_ext: str | None = None) -> list[BatchJob]:
    return [BatchJob(source, destination_for(source, dest_dir, to_ext)) for source in sources]


def _failed(job: BatchJob, error: Exception, elapsed: float = 0.0) -> ProcessingResult:
    if isinstance(error, MvxError):
        kind, code = error.kind, error.exit_code
    else:
        kind, code = "error", ExitCode.FAILURE
    return ProcessingResult(
        source_file=job.source,
        status=ProcessingStatus.FAILED,
        message=str(error),
        output_file=job.destination,
        processing_time=elapsed,
        error_kind=kind,
        exit_code=code,
    )


class BatchRunner:
    """Runs independent conversions with bounded parallelism.

    One item's failure never aborts its siblings. Jobs whose destination or
    source collides with an earlier job are skipped.
    """

    def __init__(
        self,
        converter: Converter,
        options: ConversionOptions,
        workers: int | None = None,
        *,
        show_progress: bool = True,
    ) -> None:
        self.converter = converter
        self.options = options
        self.workers = workers
        self.show_progress = show_progress
        self.cancel_event = converter.cancel_event

    def partition(self, jobs: list[BatchJob]) -> tuple[list[BatchJob], list[ProcessingResult]]:
        """Split ``jobs`` into runnable jobs and skipped collisions."""
        runnable: list[BatchJob] = []
        skipped: list[ProcessingResult] = []
        for job in jobs:
            reason = self._collision(job, runnable)
            if reason is None:
                runnable.append(job)
                continue
            LOG.warning("Skipping %s: %s", job.source, reason)
            skipped.append(
                ProcessingResult(
                    source_file=job.source,
                    status=ProcessingStatus.SKIPPED,
                    message=reason,
                    output_file=job.destination,
                )
            )
        return runnable, skipped

    @staticmethod
    def _collision(job: BatchJob, accepted: list[BatchJob]) -> str | None:
        for other in accepted:
            if same_file_path(job.destination, other.destination):
                return f"destination {job.destination} already used by {other.source}"
            if same_file_path(job.source, other.source):
                return f"source {job.source} already queued"
            if same_file_path(job.destination, other.source) or same_file_path(job.source, other.destination):
                return f"{job.destination} collides with {other.source}"
        return None

    def plan_all(self, jobs: list[BatchJob]) -> tuple[list[Plan], list[ProcessingResult]]:
        """Build every plan without executing; planning failures are collected."""
        runnable, results = self.partition(jobs)
        plans: list[Plan] = []
        for job in runnable:
            try:
                plans.append(self.converter.plan(job.source, job.destination, self.options))
            except MvxError as e:
                LOG.warning("Cannot plan %s: %s", job.source, e)
                results.append(_failed(job, e))
        return plans, results

    def run(self, jobs: list[BatchJob]) -> BatchSummary:
        runnable, skipped = self.partition(jobs)
        summary = BatchSummary(results=list(skipped))
        if not runnable:
            return summary

        workers = resolve_worker_count(self.workers, len(runnable))
        LOG.info("Converting %d files with %d workers", len(runnable), workers)
        progress_bar = tqdm(
            total=len(runnable),
            desc="Converting",
            unit="file",
            disable=not self.show_progress,
            bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]",
        )

        pool = ThreadPoolExecutor(max_workers=workers)
        try:
            future_to_job = {pool.submit(self._run_one, job): job for job in runnable}
            for future in as_completed(future_to_job):
                job = future_to_job[future]
                try:
                    result = future.result()
                except Exception as e:
                    LOG.exception("Error processing %s", job.source)
                    result = _failed(job, e)
                summary.results.append(result)
                _update_progress_description(progress_bar, result)
                progress_bar.update(1)
        except KeyboardInterrupt:
            self.cancel_event.set()
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        finally:
            pool.shutdown(wait=True)
            progress_bar.close()

        LOG.info(
            "Batch complete: %d succeeded, %d failed, %d skipped",
            summary.succeeded,
            summary.failed,
            summary.skipped,
        )
        return summary

    def _run_one(self, job: BatchJob) -> ProcessingResult:
        started = time.monotonic()
        try:
            outcome = self.converter.convert(job.source, job.destination, self.options)
        except MvxError as e:
            LOG.debug("Failed %s: %s", job.source, e)
            return _failed(job, e, time.monotonic() - started)
        return ProcessingResult(
            source_file=job.source,
            status=ProcessingStatus.SUCCESS,
            output_file=outcome.destination,
            strategy=outcome.strategy,
            bytes_written=outcome.bytes_written,
            processing_time=time.monotonic() - started,
            warnings=[str(w) for w in outcome.warnings],
        )


def _update_progress_description(progress_bar: tqdm, result: ProcessingResult) -> None:
    name = result.source_file.name
    if result.status == ProcessingStatus.SUCCESS:
        progress_bar.set_description(f"✓ {name}")
    elif result.status == ProcessingStatus.SKIPPED:
        progress_bar.set_description(f"⏭ {name}")
    else:
        progress_bar.set_description(f"✗ {name}")

"""Runs a plan's backend into a temporary sibling of the destination."""

from __future__ import annotations

import logging
import os
import queue
import shlex
import shutil
import subprocess
import tempfile
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING

from .base import (
    BackendFailed,
    BackendTimeout,
    EmptyOutput,
    ExecutionCancelled,
    FinalizeIOError,
    Strategy,
)
from .file_manager import remove_quietly
from .progress import ProgressEvent, ProgressParser
from .tools import ToolRegistry

if TYPE_CHECKING:
    from collections.abc import Callable

    from .plan import Plan

LOG = logging.getLogger(__name__)

TEMP_PREFIX = ".mvx-"
DIAGNOSTIC_LINES = 200
PROGRESS_QUEUE_SIZE = 64
POLL_INTERVAL = 0.1
TERMINATE_GRACE = 5.0
READER_JOIN_TIMEOUT = 5.0


@dataclass(frozen=True)
class TempOutput:
    """Backend output waiting to be finalized."""

    path: Path
    elapsed: float
    command: list[str] | None = None


def _pump_progress(stream: IO[str], parser: ProgressParser, events: queue.Queue[ProgressEvent]) -> None:
    for line in stream:
        event = parser.feed(line)
        if event is None:
            continue
        try:
            events.put_nowait(event)
        except queue.Full:
            # Only the latest event matters; drop the oldest.
            try:
                events.get_nowait()
            except queue.Empty:
                pass
            events.put_nowait(event)


def _pump_lines(stream: IO[str], sink: deque[str]) -> None:
    for line in stream:
        line = line.rstrip()
        if line:
            sink.append(line)


class Executor:
    """Drives one backend process to completion.

    Missing executables fail before any temporary file exists. Every failure
    path, including timeouts and interrupts, removes the temporary output.
    """

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        timeout: float | None = None,
        poll_interval: float = POLL_INTERVAL,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.registry = registry or ToolRegistry()
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.cancel_event = cancel_event

    def execute(
        self,
        plan: Plan,
        on_progress: Callable[[ProgressEvent], None] | None = None,
    ) -> TempOutput:
        executable = None
        if plan.backend is not None:
            executable = self.registry.require(plan.backend.executable)

        started = time.monotonic()
        temp_path = self._create_temp(plan)
        work_dir = None
        try:
            if plan.strategy == Strategy.RENAME or plan.backend is None:
                self._copy_source(plan, temp_path)
                return TempOutput(path=temp_path, elapsed=time.monotonic() - started)

            if plan.backend.needs_work_dir:
                work_dir = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX, dir=plan.destination.parent))
            argv = plan.backend.command(temp_path, work_dir)
            argv[0] = executable or argv[0]
            self._run(argv, plan, on_progress, started)
            if work_dir is not None:
                self._collect_document_output(plan, work_dir, temp_path)
            return TempOutput(path=temp_path, elapsed=time.monotonic() - started, command=argv)
        except BaseException:
            remove_quietly(temp_path)
            raise
        finally:
            remove_quietly(work_dir)

    def _create_temp(self, plan: Plan) -> Path:
        parent = plan.destination.parent
        suffix = f".{plan.destination_ext}" if plan.destination_ext else ""
        try:
            parent.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=suffix, dir=parent)
        except OSError as e:
            msg = f"Cannot create temporary output in {parent}: {e}"
            raise FinalizeIOError(msg, file_path=plan.destination, cause=e) from e
        os.close(fd)
        LOG.debug("Temporary output %s", name)
        return Path(name)

    def _copy_source(self, plan: Plan, temp_path: Path) -> None:
        try:
            if plan.move_source:
                temp_path.unlink()
                try:
                    os.link(plan.source, temp_path)
                except OSError:
                    shutil.copy2(plan.source, temp_path)
            else:
                shutil.copy2(plan.source, temp_path)
        except OSError as e:
            msg = f"Cannot copy {plan.source}: {e}"
            raise FinalizeIOError(msg, file_path=plan.source, cause=e) from e

    def _run(
        self,
        argv: list[str],
        plan: Plan,
        on_progress: Callable[[ProgressEvent], None] | None,
        started: float,
    ) -> None:
        LOG.info("Running %s", shlex.join(argv))
        try:
            proc = subprocess.Popen(  # noqa: S603
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            msg = f"Failed to start {argv[0]}: {e}"
            raise BackendFailed(msg, code=-1, command=argv, file_path=plan.source) from e

        duration = plan.media_info.duration if plan.media_info else None
        parser = ProgressParser(duration) if plan.backend and plan.backend.reports_progress else None
        events: queue.Queue[ProgressEvent] = queue.Queue(maxsize=PROGRESS_QUEUE_SIZE)
        diagnostics: deque[str] = deque(maxlen=DIAGNOSTIC_LINES)

        if parser is not None:
            stdout_reader = threading.Thread(target=_pump_progress, args=(proc.stdout, parser, events), daemon=True)
        else:
            stdout_reader = threading.Thread(target=_pump_lines, args=(proc.stdout, diagnostics), daemon=True)
        stderr_reader = threading.Thread(target=_pump_lines, args=(proc.stderr, diagnostics), daemon=True)
        readers = (stdout_reader, stderr_reader)
        for reader in readers:
            reader.start()

        try:
            returncode = self._wait(proc, parser, events, on_progress, started)
        except KeyboardInterrupt as e:
            self._stop(proc)
            msg = "Conversion cancelled"
            raise ExecutionCancelled(msg, file_path=plan.source) from e
        except BaseException:
            self._stop(proc)
            raise
        finally:
            for reader in readers:
                reader.join(READER_JOIN_TIMEOUT)
            for stream in (proc.stdout, proc.stderr):
                if stream is not None:
                    stream.close()

        self._forward(parser, events, on_progress, started)
        LOG.debug("%s exited with %d after %.2fs", argv[0], returncode, time.monotonic() - started)
        if returncode != 0:
            details = "\n".join(diagnostics)
            msg = f"{plan.backend.tool if plan.backend else argv[0]} failed with exit code {returncode}"
            if details:
                msg += f": {diagnostics[-1]}"
            raise BackendFailed(msg, code=returncode, diagnostics=details, command=argv, file_path=plan.source)

    def _wait(
        self,
        proc: subprocess.Popen[str],
        parser: ProgressParser | None,
        events: queue.Queue[ProgressEvent],
        on_progress: Callable[[ProgressEvent], None] | None,
        started: float,
    ) -> int:
        deadline = started + self.timeout if self.timeout else None
        while True:
            try:
                return proc.wait(timeout=self.poll_interval)
            except subprocess.TimeoutExpired:
                pass
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise KeyboardInterrupt
            if deadline is not None and time.monotonic() > deadline:
                msg = f"Backend timed out after {self.timeout}s"
                raise BackendTimeout(msg)
            self._forward(parser, events, on_progress, started)

    def _forward(
        self,
        parser: ProgressParser | None,
        events: queue.Queue[ProgressEvent],
        on_progress: Callable[[ProgressEvent], None] | None,
        started: float,
    ) -> None:
        if on_progress is None:
            return
        latest = None
        while True:
            try:
                latest = events.get_nowait()
            except queue.Empty:
                break
        if latest is None:
            if parser is not None:
                latest = parser.current()
            else:
                latest = ProgressEvent(fraction=None, eta=None, elapsed=time.monotonic() - started)
        on_progress(latest)

    def _stop(self, proc: subprocess.Popen[str]) -> None:
        if proc.poll() is not None:
            return
        LOG.debug("Terminating backend pid %d", proc.pid)
        proc.terminate()
        try:
            proc.wait(timeout=TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()

    def _collect_document_output(self, plan: Plan, work_dir: Path, temp_path: Path) -> None:
        """Move the document backend's self-named output onto ``temp_path``."""
        ext = plan.destination_ext or ""
        produced = work_dir / f"{plan.source.stem}.{ext}"
        if not produced.exists():
            candidates = sorted(p for p in work_dir.glob(f"*.{ext}") if p.is_file())
            if not candidates:
                msg = f"Document backend reported success but wrote no .{ext} file"
                raise EmptyOutput(msg, file_path=plan.source)
            produced = candidates[0]
        try:
            os.replace(produced, temp_path)
        except OSError as e:
            msg = f"Cannot relocate document output {produced}: {e}"
            raise FinalizeIOError(msg, file_path=produced, cause=e) from e

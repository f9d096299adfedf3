"""Validation and atomic publishing of backend output."""

from __future__ import annotations

import logging
import os
import shutil
from typing import TYPE_CHECKING

from .base import (
    DestinationExists,
    EmptyOutput,
    ExecutionOutcome,
    FinalizeIOError,
    SourceDeleteWarning,
)

if TYPE_CHECKING:
    from pathlib import Path

    from .plan import Plan

LOG = logging.getLogger(__name__)

MAX_BACKUP_SUFFIX = 1000


def remove_quietly(path: Path | None) -> None:
    """Delete a temporary artifact, logging instead of raising."""
    if path is None:
        return
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except OSError as e:
        LOG.warning("Failed to remove temporary %s: %s", path, e)


def next_backup_path(destination: Path, limit: int = MAX_BACKUP_SUFFIX) -> Path:
    """``<dest>.bak``, else the lowest free ``<dest>.bak.N`` up to ``limit``."""
    candidate = destination.with_name(destination.name + ".bak")
    if not os.path.lexists(candidate):
        return candidate
    for index in range(1, limit + 1):
        candidate = destination.with_name(f"{destination.name}.bak.{index}")
        if not os.path.lexists(candidate):
            return candidate
    msg = f"No free backup name for {destination} (tried .bak through .bak.{limit})"
    raise FinalizeIOError(msg, file_path=destination)


class FileManager:
    """Publishes a temporary output onto its destination.

    The destination changes identity only at the final :func:`os.replace`.
    Backups are taken as a hard link (or copy) of the existing destination,
    so the destination stays in place until that rename.
    """

    def __init__(self, max_backups: int = MAX_BACKUP_SUFFIX) -> None:
        self.max_backups = max_backups

    def finalize(self, temp_output: Path, plan: Plan, elapsed: float = 0.0) -> ExecutionOutcome:
        destination = plan.destination
        size = self._validate_output(temp_output)

        backup_path = None
        if os.path.lexists(destination):
            if plan.backup:
                backup_path = self._create_backup(destination, temp_output)
            elif not plan.overwrite:
                remove_quietly(temp_output)
                msg = f"Destination already exists: {destination} (use --overwrite or --backup)"
                raise DestinationExists(msg, file_path=destination)

        try:
            os.replace(temp_output, destination)
        except OSError as e:
            remove_quietly(temp_output)
            if backup_path is not None:
                self._discard_backup(backup_path)
            msg = f"Cannot move output into place at {destination}: {e}"
            raise FinalizeIOError(msg, file_path=destination, cause=e) from e
        except BaseException:
            if os.path.lexists(temp_output):
                remove_quietly(temp_output)
                if backup_path is not None:
                    self._discard_backup(backup_path)
            raise
        LOG.debug("Published %s -> %s (%d bytes)", temp_output, destination, size)

        outcome = ExecutionOutcome(
            source=plan.source,
            destination=destination,
            strategy=plan.strategy,
            bytes_written=size,
            backup_path=backup_path,
            elapsed=elapsed,
        )
        if plan.move_source:
            self._remove_source(plan.source, outcome)
        return outcome

    def _validate_output(self, temp_output: Path) -> int:
        try:
            size = temp_output.stat().st_size
        except FileNotFoundError:
            size = -1
        except OSError as e:
            remove_quietly(temp_output)
            msg = f"Cannot inspect backend output {temp_output}: {e}"
            raise FinalizeIOError(msg, file_path=temp_output, cause=e) from e

        if size <= 0:
            remove_quietly(temp_output)
            msg = "Backend produced no output" if size < 0 else "Backend produced an empty output file"
            raise EmptyOutput(msg, file_path=temp_output)
        return size

    def _create_backup(self, destination: Path, temp_output: Path) -> Path:
        try:
            backup_path = next_backup_path(destination, self.max_backups)
        except FinalizeIOError:
            remove_quietly(temp_output)
            raise

        try:
            try:
                os.link(destination, backup_path)
            except OSError:
                shutil.copy2(destination, backup_path)
        except OSError as e:
            remove_quietly(temp_output)
            remove_quietly(backup_path)
            msg = f"Cannot back up {destination}: {e}"
            raise FinalizeIOError(msg, file_path=destination, cause=e) from e
        except BaseException:
            remove_quietly(temp_output)
            remove_quietly(backup_path)
            raise

        LOG.info("Backed up %s -> %s", destination, backup_path)
        return backup_path

    def _discard_backup(self, backup_path: Path) -> None:
        # The destination was never touched; only the extra backup name goes.
        remove_quietly(backup_path)
        LOG.info("Rolled back backup %s", backup_path)

    def _remove_source(self, source: Path, outcome: ExecutionOutcome) -> None:
        try:
            source.unlink()
        except OSError as e:
            warning = SourceDeleteWarning(source=source, reason=e.strerror or str(e))
            outcome.warnings.append(warning)
            LOG.warning("%s", warning)
        else:
            outcome.source_removed = True


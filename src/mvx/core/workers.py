"""Worker count bounding for batch conversions."""

from __future__ import annotations

import logging

import psutil

LOG = logging.getLogger(__name__)

MAX_AUTO_WORKERS = 4
CPU_BUSY_THRESHOLD = 70
MEMORY_BUSY_THRESHOLD = 80
FALLBACK_WORKERS = 1


def resolve_worker_count(configured_workers: int | None = None, job_count: int | None = None) -> int:
    """
    Number of conversions to run at once.

    An explicit positive count is honoured as given. Otherwise the count is
    derived from the physical core count and current load, capped at
    ``MAX_AUTO_WORKERS``. The result never exceeds ``job_count``.

    Args:
        configured_workers: ``--workers`` or ``global.workers``, None for auto
        job_count: Number of queued jobs, if known

    Returns:
        A worker count of at least 1

    """
    if configured_workers is not None and configured_workers > 0:
        workers = configured_workers
    else:
        workers = _auto_worker_count()

    if job_count is not None:
        workers = max(1, min(workers, job_count))
    return workers


def _auto_worker_count() -> int:
    try:
        physical_cores = psutil.cpu_count(logical=False) or 1
        logical_cores = psutil.cpu_count(logical=True) or 1
        cpu_percent = psutil.cpu_percent(interval=0.2)
        memory_percent = psutil.virtual_memory().percent
    except (OSError, AttributeError, ValueError) as e:
        LOG.warning("Failed to detect system specs with psutil: %s. Using %d worker.", e, FALLBACK_WORKERS)
        return FALLBACK_WORKERS

    # Backends are multi-threaded themselves; half the physical cores is plenty.
    workers = max(1, physical_cores // 2)
    if cpu_percent > CPU_BUSY_THRESHOLD:
        workers = max(1, workers // 2)
        LOG.warning("High CPU load detected (%.1f%%), reducing workers to %d", cpu_percent, workers)
    if memory_percent > MEMORY_BUSY_THRESHOLD:
        workers = FALLBACK_WORKERS
        LOG.warning("High memory usage detected (%.1f%%), using %d worker", memory_percent, workers)
    workers = min(workers, MAX_AUTO_WORKERS)

    LOG.info(
        "%d physical cores, %d logical cores, CPU load %.1f%%: using %d workers",
        physical_cores,
        logical_cores,
        cpu_percent,
        workers,
    )
    return workers

"""Parsing of ffmpeg ``-progress`` key/value output."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

LOG = logging.getLogger(__name__)

_CLOCK_PATTERN = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)$")
_MICROSECOND_KEYS = ("out_time_us", "out_time_ms")


@dataclass(frozen=True)
class ProgressEvent:
    """One observation of a running backend.

    ``fraction`` is None when the total duration is unknown; renderers then
    show elapsed time only.
    """

    fraction: float | None
    eta: float | None
    elapsed: float

    @property
    def percent(self) -> float | None:
        return None if self.fraction is None else self.fraction * 100.0


def parse_clock(value: str) -> float | None:
    """``HH:MM:SS.ffffff`` to seconds."""
    match = _CLOCK_PATTERN.match(value.strip())
    if match is None:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class ProgressParser:
    """Turns a line stream into monotonic :class:`ProgressEvent` values."""

    def __init__(self, duration: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.duration = duration if duration and duration > 0 else None
        self._clock = clock
        self._started = clock()
        self._fraction: float | None = 0.0 if self.duration else None
        self._processed: float | None = None

    @property
    def fraction(self) -> float | None:
        return self._fraction

    def elapsed(self) -> float:
        return max(0.0, self._clock() - self._started)

    def current(self) -> ProgressEvent:
        """Latest state without consuming input."""
        elapsed = self.elapsed()
        return ProgressEvent(fraction=self._fraction, eta=self._eta(elapsed), elapsed=elapsed)

    def feed(self, line: str) -> ProgressEvent | None:
        """Consume one line; return an event when it carried progress."""
        key, sep, value = line.strip().partition("=")
        if not sep:
            return None
        key, value = key.strip(), value.strip()

        if key in _MICROSECOND_KEYS:
            # ffmpeg reports both keys in microseconds.
            try:
                processed = int(value) / 1_000_000
            except ValueError:
                return None
        elif key == "out_time":
            processed = parse_clock(value)
            if processed is None:
                return None
        elif key == "progress" and value == "end":
            if self.duration is not None:
                self._fraction = 1.0
            return self.current()
        else:
            return None

        if processed < 0:
            return None
        self._processed = processed
        if self.duration is not None:
            fraction = min(1.0, processed / self.duration)
            self._fraction = max(self._fraction or 0.0, fraction)
        return self.current()

    def _eta(self, elapsed: float) -> float | None:
        if not self._fraction or self._fraction >= 1.0:
            return 0.0 if self._fraction == 1.0 else None
        return elapsed * (1.0 - self._fraction) / self._fraction

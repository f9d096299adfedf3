"""tqdm rendering of backend progress for a single conversion."""

from __future__ import annotations

from typing import TYPE_CHECKING

from tqdm import tqdm

if TYPE_CHECKING:
    from ..core.progress import ProgressEvent

PERCENT_TOTAL = 100.0


class ProgressDisplay:
    """Percentage bar when the duration is known, an elapsed-time spinner otherwise.

    The bar is created lazily on the first event so runs without any
    backend process (renames) print nothing.
    """

    def __init__(self, description: str, *, enabled: bool = True) -> None:
        self.description = description
        self.enabled = enabled
        self._bar: tqdm | None = None

    def __enter__(self) -> ProgressDisplay:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def update(self, event: ProgressEvent) -> None:
        if not self.enabled:
            return
        if self._bar is None:
            determinate = event.fraction is not None
            self._bar = tqdm(
                total=PERCENT_TOTAL if determinate else None,
                desc=self.description,
                unit="%" if determinate else "it",
                leave=False,
                bar_format=(
                    "{l_bar}{bar}| {n:.0f}% [{elapsed}<{remaining}]"
                    if determinate
                    else "{desc}: {elapsed} elapsed"
                ),
            )
        if event.percent is not None:
            self._bar.n = min(PERCENT_TOTAL, event.percent)
        self._bar.refresh()

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None

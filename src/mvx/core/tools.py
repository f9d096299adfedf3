"""External tool capability lookup."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .base import MissingTool

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolSpec:
    """A named external tool and the executables that can provide it."""

    name: str
    candidates: tuple[str, ...]
    hint: str


FFMPEG = ToolSpec("ffmpeg", ("ffmpeg",), "install ffmpeg (e.g. apt install ffmpeg)")
FFPROBE = ToolSpec("ffprobe", ("ffprobe",), "install ffmpeg to enable stream-copy detection (e.g. apt install ffmpeg)")
IMAGEMAGICK = ToolSpec("imagemagick", ("magick", "convert"), "install ImageMagick (e.g. apt install imagemagick)")
LIBREOFFICE = ToolSpec(
    "libreoffice", ("soffice", "libreoffice"), "install LibreOffice (e.g. apt install libreoffice)"
)

KNOWN_TOOLS: dict[str, ToolSpec] = {spec.name: spec for spec in (FFMPEG, FFPROBE, IMAGEMAGICK, LIBREOFFICE)}


class ToolRegistry:
    """Answers "is this tool installed, and where" once per run.

    ``which`` defaults to :func:`shutil.which`; tests pass a fake lookup.
    """

    def __init__(self, which: Callable[[str], str | None] | None = None) -> None:
        self._which = which or shutil.which
        self._cache: dict[str, str | None] = {}

    def locate(self, executable: str) -> str | None:
        """Full path of ``executable``, or None when it is not installed."""
        if executable not in self._cache:
            self._cache[executable] = self._which(executable)
            LOG.debug("Tool lookup %s -> %s", executable, self._cache[executable])
        return self._cache[executable]

    def available(self, tool: str | ToolSpec) -> bool:
        return self.find(tool) is not None

    def find(self, tool: str | ToolSpec) -> tuple[str, str] | None:
        """First installed candidate as ``(executable, path)``."""
        spec = _spec(tool)
        for candidate in spec.candidates:
            path = self.locate(candidate)
            if path:
                return candidate, path
        return None

    def preferred_executable(self, tool: str | ToolSpec) -> str:
        """Installed candidate name, or the first candidate when none is installed."""
        spec = _spec(tool)
        found = self.find(spec)
        return found[0] if found else spec.candidates[0]

    def require(self, executable: str) -> str:
        """Resolve ``executable`` to a path or raise :class:`MissingTool`."""
        path = self.locate(executable)
        if path:
            return path
        spec = next((s for s in KNOWN_TOOLS.values() if executable in s.candidates), None)
        if spec is None:
            raise MissingTool(executable, f"install {executable} and make sure it is on PATH")
        raise MissingTool(spec.name, spec.hint)

    def report(self, tools: Iterable[ToolSpec] | None = None) -> list[tuple[ToolSpec, str | None]]:
        """Availability of every known tool, for diagnostics."""
        results = []
        for spec in tools or KNOWN_TOOLS.values():
            found = self.find(spec)
            results.append((spec, found[1] if found else None))
        return results


def _spec(tool: str | ToolSpec) -> ToolSpec:
    if isinstance(tool, ToolSpec):
        return tool
    return KNOWN_TOOLS[tool]

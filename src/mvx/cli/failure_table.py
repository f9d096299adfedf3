"""Failure table shown after a batch run."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.batch import ProcessingResult

# Constants for table formatting
MAX_FILENAME_LENGTH = 37
FILENAME_TRUNCATE_LENGTH = 34
MAX_ERROR_MSG_LENGTH = 37
ERROR_MSG_TRUNCATE_LENGTH = 34

TIPS = {
    "missing_tool": "TIP: run `mvx --check-tools` to see which backends are installed",
    "destination_exists": "TIP: pass --overwrite or --backup to replace existing destinations",
    "unsupported_conversion": "TIP: use --plan to see how each file would be converted",
}


def _truncate(text: str, limit: int, keep: int) -> str:
    return text if len(text) <= limit else text[:keep] + "..."


def print_failure_table(failed_results: list[ProcessingResult]) -> None:
    """
    Print a simple table showing conversion failures.

    Args:
        failed_results: Batch results with failed status

    """
    if not failed_results:
        return

    print("\n" + "=" * 80)
    print(f"{'CONVERSION FAILURES':^80}")
    print("=" * 80)
    print(f"Total failed: {len(failed_results)} files\n")

    print(f"{'FILE':<40} | {'ERROR':<37}")
    print("-" * 80)

    for result in failed_results:
        filename = _truncate(result.source_file.name, MAX_FILENAME_LENGTH, FILENAME_TRUNCATE_LENGTH)
        error_msg = _truncate(result.message or "Unknown error", MAX_ERROR_MSG_LENGTH, ERROR_MSG_TRUNCATE_LENGTH)
        print(f"{filename:<40} | {error_msg:<37}")

    kinds = {r.error_kind for r in failed_results}
    tips = [tip for kind, tip in TIPS.items() if kind in kinds]
    if tips:
        print()
        for tip in tips:
            print(tip)
    print()

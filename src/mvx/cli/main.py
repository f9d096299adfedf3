"""Main CLI interface for mvx."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from .. import __version__
from ..config import load_config
from ..config.constants import PLAN_SEPARATOR, VERBOSE_LOGGING_THRESHOLD
from ..core import (
    BackendFailed,
    BatchRunner,
    ConversionOptions,
    Converter,
    ExitCode,
    InvalidOptionValue,
    MvxError,
    ToolRegistry,
    build_jobs,
    collect_sources,
    render_plan,
    render_plan_json,
    resolve_options,
)
from .failure_table import print_failure_table
from .progress import ProgressDisplay

if TYPE_CHECKING:
    from collections.abc import Iterator

    from ..config import MvxConfig

LOG = logging.getLogger(__name__)


@contextmanager
def _sigterm_as_interrupt() -> Iterator[None]:
    """Deliver SIGTERM as KeyboardInterrupt so cleanup paths run."""

    def _raise(_signum: int, _frame: object) -> None:
        raise KeyboardInterrupt

    try:
        previous = signal.signal(signal.SIGTERM, _raise)
    except (ValueError, AttributeError):
        # Not in the main thread, or no SIGTERM on this platform.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


class MvxCLI:
    """Command line front end: one conversion, a batch, or a tool check."""

    def __init__(self, registry: ToolRegistry | None = None) -> None:
        self.registry = registry or ToolRegistry()

    @staticmethod
    def setup_logging(verbosity: int, default_level: str = "WARNING") -> None:
        """Setup logging based on verbosity level."""
        level_map = {
            1: logging.INFO,
            2: logging.DEBUG,
        }
        if verbosity:
            level = level_map.get(verbosity, logging.DEBUG)
        else:
            level = logging.getLevelName(default_level.upper())
            if not isinstance(level, int):
                level = logging.WARNING

        log_format = (
            "%(levelname)s: %(name)s: %(message)s"
            if verbosity >= VERBOSE_LOGGING_THRESHOLD
            else "%(levelname)s: %(message)s"
        )
        logging.basicConfig(level=level, format=log_format, handlers=[logging.StreamHandler(sys.stderr)], force=True)

    def build_parser(self) -> argparse.ArgumentParser:
        """Build the argument parser."""
        parser = argparse.ArgumentParser(
            prog="mvx",
            description="Move or convert a file; the destination extension decides how.",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Same format under a different name: a plain copy, no backend
  mvx photo.jpeg photo.jpg

  # Container change; streams are copied when the codecs fit
  mvx clip.mov clip.mp4

  # Show what would happen without doing it
  mvx report.docx report.pdf --plan

  # Convert a directory of recordings into another folder
  mvx recordings/ --dest-dir out/ --to-ext mp3 --workers 2
            """,
        )

        parser.add_argument("paths", nargs="*", metavar="PATH", help="SOURCE DEST, or batch inputs with --dest-dir")
        parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
        parser.add_argument(
            "-v",
            "--verbose",
            action="count",
            default=0,
            help="Increase verbosity (-v for info, -vv for debug)",
        )
        parser.add_argument("--config", type=Path, help="Path to configuration file")
        parser.add_argument("--profile", help="Apply a named profile from the configuration file")

        mode = parser.add_argument_group("mode")
        mode.add_argument(
            "--plan",
            "--dry-run",
            dest="plan",
            action="store_true",
            help="Show the plan without converting anything",
        )
        mode.add_argument("--json", action="store_true", help="Machine-readable output")
        mode.add_argument("--check-tools", action="store_true", help="Report which backends are installed")
        mode.add_argument("--no-progress", action="store_true", help="Do not show progress bars")
        mode.add_argument("--timeout", type=float, help="Abort a backend after this many seconds")

        output = parser.add_argument_group("destination handling")
        output.add_argument("--overwrite", action="store_true", help="Replace an existing destination")
        output.add_argument("--backup", action="store_true", help="Keep an existing destination as <dest>.bak")
        output.add_argument("--move-source", action="store_true", help="Remove the source after success")

        conversion = parser.add_argument_group("conversion")
        conversion.add_argument("--image-quality", metavar="N", help="Image quality 1-100")
        conversion.add_argument("--video-bitrate", metavar="B", help="Video bitrate, e.g. 2500k")
        conversion.add_argument("--audio-bitrate", metavar="B", help="Audio bitrate, e.g. 192k")
        conversion.add_argument("--preset", help="Encoder speed preset (x264 names)")
        conversion.add_argument("--video-codec", metavar="C", help="Video encoder, e.g. libx265")
        conversion.add_argument("--audio-codec", metavar="C", help="Audio encoder, e.g. libopus")
        conversion.add_argument("--stream-copy", action="store_true", help="Force remux without re-encoding")
        conversion.add_argument("--transcode", action="store_true", help="Force re-encoding")

        batch = parser.add_argument_group("batch")
        batch.add_argument("--dest-dir", type=Path, help="Convert every input into this directory")
        batch.add_argument("--input", action="append", default=[], metavar="PATH", help="Additional input (repeatable)")
        batch.add_argument("--stdin", action="store_true", help="Read input paths from stdin, one per line")
        batch.add_argument("--recursive", action="store_true", help="Descend into input directories")
        batch.add_argument("--to-ext", metavar="EXT", help="Destination extension for batch outputs")
        batch.add_argument("--workers", type=int, help="Parallel conversions (default: based on CPU count)")

        return parser

    @staticmethod
    def create_options(args: argparse.Namespace) -> ConversionOptions:
        """Conversion options from CLI arguments; unset flags stay None."""
        return ConversionOptions(
            image_quality=args.image_quality,
            video_bitrate=args.video_bitrate,
            audio_bitrate=args.audio_bitrate,
            preset=args.preset,
            video_codec=args.video_codec,
            audio_codec=args.audio_codec,
            stream_copy=args.stream_copy,
            transcode=args.transcode,
            overwrite=args.overwrite,
            backup=args.backup,
            move_source=args.move_source,
        )

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parser = self.build_parser()
        parsed_args = parser.parse_args(args)
        self.setup_logging(parsed_args.verbose)

        with _sigterm_as_interrupt():
            try:
                if parsed_args.check_tools:
                    return self.check_tools(json_output=parsed_args.json)

                config = load_config(parsed_args.config)
                if not parsed_args.verbose and config.global_.log_level != "WARNING":
                    self.setup_logging(0, config.global_.log_level)

                options = resolve_options(self.create_options(parsed_args), config, parsed_args.profile)
                converter = Converter(config, registry=self.registry, timeout=parsed_args.timeout)

                if self._is_batch(parsed_args):
                    return self.run_batch(parsed_args, converter, options, config)
                if len(parsed_args.paths) != 2:  # noqa: PLR2004
                    parser.error("expected SOURCE and DEST (or --dest-dir for batch mode)")
                return self.run_single(parsed_args, converter, options, config)
            except MvxError as e:
                self.report_error(e, json_output=parsed_args.json, verbosity=parsed_args.verbose)
                return int(e.exit_code)
            except KeyboardInterrupt:
                LOG.info("Operation cancelled by user")
                if parsed_args.json:
                    print(json.dumps({"status": "error", "error": "cancelled", "kind": "cancelled"}))
                return int(ExitCode.CANCELLED)
            except Exception as e:
                LOG.exception("Unexpected error: %s", e)
                if parsed_args.json:
                    print(json.dumps({"status": "error", "error": str(e), "kind": "internal_error"}))
                return int(ExitCode.FAILURE)

    @staticmethod
    def _is_batch(args: argparse.Namespace) -> bool:
        return bool(args.dest_dir or args.input or args.stdin or args.to_ext)

    def run_single(
        self,
        args: argparse.Namespace,
        converter: Converter,
        options: ConversionOptions,
        config: MvxConfig,
    ) -> int:
        source, destination = (Path(p) for p in args.paths)
        plan = converter.plan(source, destination, options)

        if args.plan:
            print(render_plan_json(plan) if args.json else render_plan(plan))
            return int(ExitCode.SUCCESS)

        show_progress = config.global_.progress and not (args.no_progress or args.json)
        with ProgressDisplay(f"{plan.strategy.value} {source.name}", enabled=show_progress) as display:
            outcome = converter.run(plan, on_progress=display.update)

        if args.json:
            print(json.dumps(outcome.to_dict()))
        else:
            print(f"{plan.strategy.value}: {source} -> {destination} ({outcome.bytes_written} bytes)")
            if outcome.backup_path is not None:
                print(f"backup: {outcome.backup_path}")
        return int(ExitCode.SUCCESS)

    def run_batch(
        self,
        args: argparse.Namespace,
        converter: Converter,
        options: ConversionOptions,
        config: MvxConfig,
    ) -> int:
        if args.dest_dir is None:
            msg = "--dest-dir is required in batch mode"
            raise InvalidOptionValue(msg)

        inputs = list(args.paths) + list(args.input)
        if args.stdin:
            inputs.extend(line.rstrip("\n") for line in sys.stdin)
        sources = collect_sources(inputs, recursive=args.recursive)
        if not sources:
            msg = "no input files"
            raise InvalidOptionValue(msg)

        jobs = build_jobs(sources, args.dest_dir, args.to_ext)
        runner = BatchRunner(
            converter,
            options,
            workers=args.workers if args.workers is not None else config.global_.workers,
            show_progress=config.global_.progress and not (args.no_progress or args.json),
        )

        if args.plan:
            plans, problems = runner.plan_all(jobs)
            if args.json:
                print(json.dumps([p.to_dict() for p in plans] + [r.to_dict() for r in problems], indent=2))
            else:
                print(f"\n{PLAN_SEPARATOR}\n".join(render_plan(p) for p in plans))
                for problem in problems:
                    print(f"mvx: {problem.status.value}: {problem.source_file}: {problem.message}", file=sys.stderr)
            failed = any(r.exit_code != ExitCode.SUCCESS for r in problems)
            return int(ExitCode.FAILURE if failed else ExitCode.SUCCESS)

        summary = runner.run(jobs)
        if args.json:
            print(json.dumps(summary.to_dict(), indent=2))
        else:
            print(f"Converted {summary.succeeded}, failed {summary.failed}, skipped {summary.skipped}")
            print_failure_table(summary.failures)
        return int(summary.exit_code)

    def check_tools(self, *, json_output: bool = False) -> int:
        report = self.registry.report()
        if json_output:
            data = [{"tool": spec.name, "path": path, "hint": None if path else spec.hint} for spec, path in report]
            print(json.dumps(data, indent=2))
        else:
            for spec, path in report:
                print(f"{spec.name:<12} {path}" if path else f"{spec.name:<12} missing ({spec.hint})")
        missing = [spec for spec, path in report if path is None]
        return int(ExitCode.MISSING_TOOL if missing else ExitCode.SUCCESS)

    @staticmethod
    def report_error(error: MvxError, *, json_output: bool, verbosity: int) -> None:
        if json_output:
            print(json.dumps({"status": "error", "error": str(error), "kind": error.kind}))
        else:
            print(f"mvx: error: {error}", file=sys.stderr)
        if isinstance(error, BackendFailed) and error.diagnostics:
            if verbosity:
                print(error.diagnostics, file=sys.stderr)
            else:
                LOG.debug("Backend diagnostics:\n%s", error.diagnostics)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the CLI."""
    cli = MvxCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())

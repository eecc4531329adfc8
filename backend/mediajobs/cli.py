"""
mediajobs CLI - thin entrypoint for operator commands.

Commands:
- run:     transcode one input set to one output, printing progress
- probe:   print ffprobe metadata for a file or URL as JSON
- presets: list the named output presets
- serve:   run the HTTP job API

Design Principles:
==================
- CLI is a dispatcher only; no execution logic lives here
- Surface errors verbatim from the engine
- Exit non-zero on failure
- No interactive prompts
- Settings come from flags and MEDIAJOBS_* environment variables only

Exit Codes:
===========
- 0: Success
- 1: Validation error
- 2: Execution error
- 3: Timed out or cancelled
- 4: System error (bad configuration, missing binary, etc.)
"""

import argparse
import logging
import sys
from typing import List, NoReturn, Optional

from .commands.errors import ValidationError
from .commands.models import InputSpec, OutputSpec
from .commands.presets import PRESETS, list_presets
from .config import ConfigurationError, EngineSettings
from .execution.binaries import verify_binaries
from .execution.errors import ProcessSpawnError
from .execution.progress import Progress, format_eta
from .jobs.manager import JobManager
from .jobs.models import Job, JobSnapshot, JobStatus
from .metadata.errors import ProbeFailedError, ProbeNotFoundError
from .metadata.probe import FFProbe
from .observability.metrics import InMemoryMetrics

EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_EXECUTION = 2
EXIT_INTERRUPTED = 3
EXIT_SYSTEM = 4

_STATUS_EXIT = {
    JobStatus.COMPLETED: EXIT_OK,
    JobStatus.FAILED: EXIT_EXECUTION,
    JobStatus.TIMED_OUT: EXIT_INTERRUPTED,
    JobStatus.CANCELLED: EXIT_INTERRUPTED,
}


def _load_settings(args: argparse.Namespace, **overrides) -> EngineSettings:
    """
    Raises:
        SystemExit(4): Invalid configuration
    """
    if getattr(args, "ffmpeg", None):
        overrides["ffmpeg_path"] = args.ffmpeg
    if getattr(args, "ffprobe", None):
        overrides["ffprobe_path"] = args.ffprobe
    if getattr(args, "verify_binaries", False):
        overrides["verify_binaries"] = True
    try:
        settings = EngineSettings.from_env(**overrides)
        if settings.verify_binaries:
            verify_binaries(settings)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(EXIT_SYSTEM)
    return settings


def _exit_code(snapshot: JobSnapshot) -> int:
    # A binary that cannot be started is a setup problem, not a job failure
    if snapshot.error_type == ProcessSpawnError.__name__:
        return EXIT_SYSTEM
    return _STATUS_EXIT.get(snapshot.status, EXIT_EXECUTION)


def _format_progress(progress: Progress) -> str:
    percent = f"{progress.percent:5.1f}%" if progress.percent is not None else "  ?  %"
    parts = [f"[{percent}]", f"time={progress.time_seconds:.2f}s"]
    if progress.fps is not None:
        parts.append(f"fps={progress.fps:g}")
    if progress.speed is not None:
        parts.append(f"speed={progress.speed:g}x")
    parts.append(format_eta(progress.eta_seconds))
    return " ".join(parts)


def cmd_run(args: argparse.Namespace) -> NoReturn:
    """
    Run one job to completion.

    Exit codes:
        0: Completed
        1: Validation error
        2: Execution error
        3: Timed out or interrupted
        4: Configuration error or the ffmpeg binary could not be started
    """
    settings = _load_settings(args, max_concurrent=1)

    job = Job(
        inputs=tuple(InputSpec(path=path) for path in args.input),
        outputs=(OutputSpec(
            path=args.output,
            **{k: v for k, v in (
                ("video_codec", args.vcodec),
                ("audio_codec", args.acodec),
            ) if v is not None},
        ),),
        preset=args.preset,
        timeout_seconds=args.timeout,
        overwrite=not args.no_overwrite,
    )

    manager = JobManager(settings)
    try:
        job_id = manager.submit(job)
    except ValidationError as e:
        for field, reason in e.issues:
            print(f"✗ {field}: {reason}", file=sys.stderr)
        manager.shutdown()
        sys.exit(EXIT_VALIDATION)

    try:
        if not args.quiet:
            for progress in manager.progress_stream(job_id):
                print(_format_progress(progress), flush=True)
        snapshot = manager.wait(job_id)
    except KeyboardInterrupt:
        print("\nInterrupted, cancelling job...", file=sys.stderr)
        manager.shutdown()
        sys.exit(EXIT_INTERRUPTED)

    manager.shutdown()

    if snapshot.status == JobStatus.COMPLETED:
        print(f"✓ Completed: {args.output}")
        if snapshot.stats is not None:
            print(f"  {snapshot.stats.model_dump_json(exclude_none=True)}")
    else:
        print(f"✗ {snapshot.status.value}: {snapshot.error}", file=sys.stderr)

    sys.exit(_exit_code(snapshot))


def cmd_probe(args: argparse.Namespace) -> NoReturn:
    """
    Print probe results as JSON.

    Exit codes:
        0: Probed
        2: ffprobe failed
        4: ffprobe not found
    """
    settings = _load_settings(args)
    prober = FFProbe.from_settings(settings)
    try:
        info = prober.probe(args.source)
    except ProbeNotFoundError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(EXIT_SYSTEM)
    except ProbeFailedError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(EXIT_EXECUTION)

    print(info.model_dump_json(indent=2, exclude_none=True))
    sys.exit(EXIT_OK)


def cmd_presets(args: argparse.Namespace) -> NoReturn:
    for name in list_presets():
        settings = ", ".join(f"{k}={v}" for k, v in PRESETS[name].items())
        print(f"{name:<12} {settings}")
    sys.exit(EXIT_OK)


def cmd_serve(args: argparse.Namespace) -> NoReturn:
    """Run the HTTP job API until interrupted."""
    from .monitoring.server import run_server

    settings = _load_settings(args)
    manager = JobManager(settings, metrics=InMemoryMetrics())
    try:
        run_server(manager, host=args.host, port=args.port)
    finally:
        manager.shutdown()
    sys.exit(EXIT_OK)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mediajobs",
        description="Concurrent media processing jobs with timeouts, cancellation and cleanup",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    parser.add_argument("--ffmpeg", help="Path to the ffmpeg binary")
    parser.add_argument("--ffprobe", help="Path to the ffprobe binary")
    parser.add_argument(
        "--verify-binaries", action="store_true",
        help="Check ffmpeg/ffprobe versions before running (exit 4 on failure)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to execute")

    # Run command
    parser_run = subparsers.add_parser("run", help="Run one job and wait for it")
    parser_run.add_argument(
        "-i", "--input", action="append", required=True,
        help="Input file (repeat for multiple inputs)",
    )
    parser_run.add_argument("-o", "--output", required=True, help="Output file")
    parser_run.add_argument("--vcodec", help="Video codec, e.g. libx264 or copy")
    parser_run.add_argument("--acodec", help="Audio codec, e.g. aac or copy")
    parser_run.add_argument(
        "--preset", choices=list_presets(), help="Named output preset"
    )
    parser_run.add_argument(
        "--timeout", type=float, default=None,
        help="Wall-clock timeout in seconds (default: engine setting)",
    )
    parser_run.add_argument(
        "--no-overwrite", action="store_true", help="Fail instead of overwriting the output"
    )
    parser_run.add_argument("-q", "--quiet", action="store_true", help="Do not print progress")
    parser_run.set_defaults(func=cmd_run)

    # Probe command
    parser_probe = subparsers.add_parser("probe", help="Print media metadata as JSON")
    parser_probe.add_argument("source", help="File path or URL")
    parser_probe.set_defaults(func=cmd_probe)

    # Presets command
    parser_presets = subparsers.add_parser("presets", help="List output presets")
    parser_presets.set_defaults(func=cmd_presets)

    # Serve command
    parser_serve = subparsers.add_parser("serve", help="Run the HTTP job API")
    parser_serve.add_argument("--host", default=None, help="Bind address (default: 127.0.0.1)")
    parser_serve.add_argument("--port", type=int, default=8085, help="Port (default: 8085)")
    parser_serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> NoReturn:
    """
    Main CLI entrypoint.

    Parses arguments and dispatches to subcommands.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    args.func(args)


if __name__ == "__main__":
    main()

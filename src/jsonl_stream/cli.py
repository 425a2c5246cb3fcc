"""Command-line interface for jsonl-stream."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import httpx

from .exceptions import InvalidCheckpointError, StaleCheckpointError, StreamError
from .job import ResumableJob
from .models import FileLocation, Record, StreamConfig
from .progress import delete_job_progress, list_jobs
from .stream import stream_jsonl

DEFAULT_PROGRESS_PATH = "jsonl-stream.progress"


def create_client(timeout: float | None) -> httpx.AsyncClient:
    """HTTP client shared by every request of one CLI run."""
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True)


def cmd_fetch(args: argparse.Namespace) -> int:
    """Handle the 'fetch' subcommand."""
    if args.checkpoint_every < 1:
        print("Error: --checkpoint-every must be at least 1", file=sys.stderr)
        return 1
    try:
        config = StreamConfig(
            url=args.url,
            starting_location=_starting_location(args),
            initial_delay=args.initial_delay,
            max_delay=args.max_delay,
            max_retry_time=args.max_retry_time,
            compression=args.compression,
            on_decode_error="skip" if args.skip_invalid else "raise",
            request_timeout=args.timeout,
        )
    except (ValueError, InvalidCheckpointError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return asyncio.run(_fetch(args, config))


async def _fetch(args: argparse.Namespace, config: StreamConfig) -> int:
    async with create_client(config.request_timeout) as client:
        try:
            if args.job:
                await _fetch_job(args, config, client)
            else:
                async with stream_jsonl(config, client=client) as stream:
                    count = 0
                    async for record in stream:
                        _print_record(record, args)
                        count += 1
                        if args.limit and count >= args.limit:
                            break
        except StreamError as e:
            print(f"Error: {e}", file=sys.stderr)
            print(f"Resume with: --from-location '{e.location.to_json()}'", file=sys.stderr)
            return 1
        except (StaleCheckpointError, InvalidCheckpointError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    return 0


async def _fetch_job(
    args: argparse.Namespace, config: StreamConfig, client: httpx.AsyncClient
) -> None:
    if config.starting_location is not None:
        print("Warning: --job resumes from its checkpoint; ignoring --from-*", file=sys.stderr)

    async with ResumableJob(config, args.job, args.progress, client=client) as job:
        if job.completed:
            print(f"Job '{args.job}' already completed", file=sys.stderr)
            return
        count = 0
        try:
            async for record in job:
                _print_record(record, args)
                count += 1
                if count % args.checkpoint_every == 0:
                    job.checkpoint()
                if args.limit and count >= args.limit:
                    break
        finally:
            # Everything printed so far counts as processed
            job.checkpoint()


def _starting_location(args: argparse.Namespace) -> FileLocation | None:
    if args.from_location:
        return FileLocation.from_json(args.from_location)
    if args.from_offset is not None or args.from_line is not None:
        return FileLocation(line=args.from_line or 0, byte_offset=args.from_offset or 0)
    return None


def _print_record(record: Record, args: argparse.Namespace) -> None:
    indent = 2 if args.pretty else None
    if args.with_location:
        payload = {"value": record.value, "location": record.location.to_dict()}
        print(json.dumps(payload, indent=indent))
    else:
        print(json.dumps(record.value, indent=indent))


def cmd_jobs(args: argparse.Namespace) -> int:
    """Handle the 'jobs' subcommand."""
    if args.reset:
        try:
            deleted = delete_job_progress(Path(args.progress), args.reset)
        except InvalidCheckpointError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        if deleted:
            print(f"Reset job '{args.reset}'")
            return 0
        print(f"Error: No job '{args.reset}' in {args.progress}", file=sys.stderr)
        return 1

    jobs = list_jobs(Path(args.progress))
    if args.json:
        info = [
            {
                "job_id": job.job_id,
                "url": job.url,
                "location": job.location.to_dict(),
                "status": job.status,
                "last_checkpoint_at": job.last_checkpoint_at.isoformat(),
            }
            for job in jobs
        ]
        print(json.dumps(info, indent=2))
        return 0

    if not jobs:
        print("No jobs")
    for job in jobs:
        print(f"{job.job_id}: {job.status} at line {job.location.line:,} "
              f"(byte {job.location.byte_offset:,}) of {job.url}")
    return 0


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="jsonl-stream",
        description="Resumable streaming of remote JSONL (optionally gzipped)",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # fetch subcommand
    fetch_parser = subparsers.add_parser(
        "fetch",
        help="Stream records from a URL",
        description="Print every record of a remote JSONL resource as one JSON line",
    )
    fetch_parser.add_argument("url", help="URL of the JSONL resource")
    fetch_parser.add_argument(
        "--from-location",
        metavar="JSON",
        help='Resume location, e.g. \'{"byte_offset":8,"line":1}\'',
    )
    fetch_parser.add_argument("--from-offset", type=int, help="Resume byte offset")
    fetch_parser.add_argument("--from-line", type=int, help="Resume line count")
    fetch_parser.add_argument(
        "--compression", choices=("auto", "gzip", "none"), default="auto"
    )
    fetch_parser.add_argument(
        "--skip-invalid", action="store_true", help="Skip lines that are not valid JSON"
    )
    fetch_parser.add_argument("--limit", type=int, help="Stop after N records")
    fetch_parser.add_argument(
        "--with-location",
        action="store_true",
        help='Print {"value": ..., "location": ...} objects',
    )
    fetch_parser.add_argument(
        "--pretty", action="store_true", help="Pretty-print JSON output"
    )
    fetch_parser.add_argument(
        "--initial-delay", type=float, default=1.0, help="First retry delay (seconds)"
    )
    fetch_parser.add_argument(
        "--max-delay", type=float, default=30.0, help="Longest retry delay (seconds)"
    )
    fetch_parser.add_argument(
        "--max-retry-time",
        type=float,
        default=3600.0,
        help="Give up after retrying this long (seconds)",
    )
    fetch_parser.add_argument(
        "--timeout", type=float, default=30.0, help="Per-request timeout (seconds)"
    )
    fetch_parser.add_argument("--job", help="Checkpoint progress under this job id")
    fetch_parser.add_argument(
        "--progress",
        default=DEFAULT_PROGRESS_PATH,
        help=f"Progress file for --job (default: {DEFAULT_PROGRESS_PATH})",
    )
    fetch_parser.add_argument(
        "--checkpoint-every",
        type=int,
        default=100,
        help="Checkpoint every N records with --job",
    )
    fetch_parser.set_defaults(func=cmd_fetch)

    # jobs subcommand
    jobs_parser = subparsers.add_parser(
        "jobs",
        help="List or reset checkpointed jobs",
        description="Show the jobs recorded in a progress file",
    )
    jobs_parser.add_argument(
        "progress",
        nargs="?",
        default=DEFAULT_PROGRESS_PATH,
        help=f"Progress file (default: {DEFAULT_PROGRESS_PATH})",
    )
    jobs_parser.add_argument(
        "--json", action="store_true", help="Output as JSON for scripting"
    )
    jobs_parser.add_argument("--reset", metavar="JOB_ID", help="Forget a job's progress")
    jobs_parser.set_defaults(func=cmd_jobs)

    return parser


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()

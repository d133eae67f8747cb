"""
Command line interface for the provisioning job tracker.

Usage:
    provtrack submit request.json --meta projectId=p1 --watch
    provtrack watch
    provtrack status job-123
    provtrack forget

Configuration comes from the environment / .env (see config.settings).

Exit codes:
    0  job succeeded (or command completed)
    1  job failed or was cancelled
    2  authentication, authorization or request error
    3  no stored job to watch
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.settings import AppSettings, get_settings
from provtrack.async_utils import run_sync
from provtrack.client import WORKSPACE_STATUS_PATH, WORKSPACE_SUBMIT_PATH, HttpStatusClient
from provtrack.errors import TerminalJobError, TrackerError
from provtrack.logging_config import configure_from_settings
from provtrack.models import JobState, Timeline
from provtrack.status import Outcome
from provtrack.store import build_store
from provtrack.timeline import CLUSTER_STEPS, WORKSPACE_STEPS, reconcile
from provtrack.tracker import JobTracker, TrackerListener

EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_REQUEST_ERROR = 2
EXIT_NOTHING_STORED = 3

_STATUS_MARKS = {
    "pending": " ",
    "active": ">",
    "complete": "x",
    "error": "!",
}


def format_timeline(timeline: Timeline) -> str:
    lines = []
    for index, step in enumerate(timeline.steps):
        focus = "*" if index == timeline.active_index else " "
        mark = _STATUS_MARKS.get(step.status.value, "?")
        lines.append(f"{focus}[{mark}] {step.label}: {step.message}")
    return "\n".join(lines)


class ConsoleListener(TrackerListener):
    """Prints tracker notifications to stdout/stderr."""

    def __init__(self, as_json: bool = False):
        self.as_json = as_json

    def on_update(self, state: JobState, timeline: Timeline) -> None:
        if self.as_json:
            print(json.dumps({"state": state.to_dict(), "timeline": timeline.to_dict()}))
            return
        print(f"\n{state.id}: {state.status} ({state.normalized_progress:.0f}%)")
        print(format_timeline(timeline))

    def on_terminal(self, outcome: Outcome, state: JobState) -> None:
        if outcome == Outcome.SUCCEEDED:
            print(f"Job {state.id} completed successfully.")
        else:
            print(f"Job {state.id} failed: {state.error or state.status}", file=sys.stderr)

    def on_transient_error(self, message: str) -> None:
        print(f"warning: {message}", file=sys.stderr)

    def on_fatal_error(self, error: TrackerError) -> None:
        print(f"error: {error}", file=sys.stderr)


def parse_metadata(pairs: Optional[List[str]]) -> Dict[str, str]:
    """
    Parse --meta key=value pairs.

    Raises:
        ValueError: A pair has no "="
    """
    metadata: Dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"metadata must be key=value, got {pair!r}")
        metadata[key.strip()] = value.strip()
    return metadata


def _build_client(settings: AppSettings, workspace: bool) -> HttpStatusClient:
    if workspace:
        return HttpStatusClient.from_settings(
            settings.control_plane,
            submit_path=WORKSPACE_SUBMIT_PATH,
            status_path=WORKSPACE_STATUS_PATH,
        )
    return HttpStatusClient.from_settings(settings.control_plane)


async def _follow(tracker: JobTracker, timeout: Optional[float]) -> int:
    try:
        await tracker.wait_for_terminal(timeout=timeout)
    except TerminalJobError:
        return EXIT_JOB_FAILED
    except asyncio.TimeoutError:
        print("Timed out waiting for the job; it stays stored for `provtrack watch`.",
              file=sys.stderr)
        return EXIT_JOB_FAILED
    except TrackerError:
        return EXIT_REQUEST_ERROR
    finally:
        await tracker.aclose()
    return EXIT_OK


def load_request(path: str) -> Dict[str, Any]:
    """
    Read the provisioning request from a JSON file.

    Raises:
        ValueError: File cannot be read or does not hold a JSON object
    """
    try:
        request = json.loads(Path(path).read_text())
    except OSError as e:
        raise ValueError(f"cannot read request file {path}: {e.strerror or e}")
    except ValueError as e:
        raise ValueError(f"request file {path} is not valid JSON: {e}")
    if not isinstance(request, dict):
        raise ValueError(f"request file {path} must hold a JSON object")
    return request


async def cmd_submit(args: argparse.Namespace, settings: AppSettings) -> int:
    try:
        request = load_request(args.request)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_REQUEST_ERROR
    metadata = parse_metadata(args.meta)
    steps = WORKSPACE_STEPS if args.workspace else CLUSTER_STEPS

    async with _build_client(settings, args.workspace) as client:
        tracker = JobTracker.from_settings(
            settings, client=client, steps=steps, listeners=[ConsoleListener(args.json)]
        )
        # A stored job resumes polling on construction; always shut it down
        async with tracker:
            try:
                handle = await tracker.start(request, metadata=metadata)
            except TrackerError as e:
                print(f"error: {e}", file=sys.stderr)
                return EXIT_REQUEST_ERROR
            print(f"Submitted job {handle.id} ({handle.initial_status or 'unknown'})")
            if not args.watch:
                return EXIT_OK
            return await _follow(tracker, args.timeout)


async def cmd_watch(args: argparse.Namespace, settings: AppSettings) -> int:
    steps = WORKSPACE_STEPS if args.workspace else CLUSTER_STEPS
    async with _build_client(settings, args.workspace) as client:
        tracker = JobTracker.from_settings(
            settings, client=client, steps=steps, listeners=[ConsoleListener(args.json)]
        )
        if tracker.job_id is None:
            print("No stored job to watch.", file=sys.stderr)
            return EXIT_NOTHING_STORED
        print(f"Watching job {tracker.job_id}")
        return await _follow(tracker, args.timeout)


async def cmd_status(args: argparse.Namespace, settings: AppSettings) -> int:
    steps = WORKSPACE_STEPS if args.workspace else CLUSTER_STEPS
    async with _build_client(settings, args.workspace) as client:
        try:
            state = await client.fetch_status(args.job_id)
        except TrackerError as e:
            print(f"error: {e}", file=sys.stderr)
            return EXIT_REQUEST_ERROR
    timeline = reconcile(steps, state)
    print(json.dumps(
        {"state": state.to_dict(), "timeline": timeline.to_dict()},
        indent=2,
        sort_keys=True,
    ))
    return EXIT_OK


def cmd_forget(args: argparse.Namespace, settings: AppSettings) -> int:
    store = build_store(settings.tracker)
    ref = store.load()
    store.clear()
    if ref is None:
        print("No stored job.")
    else:
        print(f"Forgot job {ref.job_id}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="provtrack", description="Submit and track provisioning jobs"
    )
    parser.add_argument("--json", action="store_true", help="Emit updates as JSON lines")
    parser.add_argument(
        "--workspace", action="store_true",
        help="Use workspace launch endpoints and steps instead of cluster ones",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    submit = sub.add_parser("submit", help="Submit a request (JSON file)")
    submit.add_argument("request", help="Path to the request JSON")
    submit.add_argument("--meta", action="append", metavar="KEY=VALUE",
                        help="Correlation metadata stored with the job")
    submit.add_argument("--watch", action="store_true", help="Follow the job until it ends")
    submit.add_argument("--timeout", type=float, default=None, help="Give up after N seconds")

    watch = sub.add_parser("watch", help="Resume the stored job and follow it")
    watch.add_argument("--timeout", type=float, default=None, help="Give up after N seconds")

    status = sub.add_parser("status", help="Fetch one status snapshot")
    status.add_argument("job_id")

    sub.add_parser("forget", help="Drop the stored job reference")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    configure_from_settings(settings)

    if args.command == "forget":
        return cmd_forget(args, settings)
    if args.command == "submit":
        try:
            parse_metadata(args.meta)
            load_request(args.request)
        except ValueError as e:
            parser.error(str(e))
        return run_sync(cmd_submit(args, settings))
    if args.command == "watch":
        return run_sync(cmd_watch(args, settings))
    return run_sync(cmd_status(args, settings))


if __name__ == "__main__":
    sys.exit(main())

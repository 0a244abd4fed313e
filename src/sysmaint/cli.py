"""Command dispatcher mapping CLI commands onto the probe and action APIs."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from collections.abc import Callable
from typing import Any, TypeVar

from sysmaint.core.config import Settings
from sysmaint.core.errors import CatalogError, UnknownActionError
from sysmaint.core.types import ActionStatus
from sysmaint.runtime import MaintenanceRuntime

T = TypeVar("T")

_FAILED = {ActionStatus.FAILURE, ActionStatus.PARTIAL_FAILURE, ActionStatus.CANCELLED}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sysmaint", description="System facts and maintenance actions")
    sub = parser.add_subparsers(dest="command", required=True)

    facts = sub.add_parser("facts", help="Print the current fact snapshot")
    facts.add_argument("--key", action="append", dest="keys", help="Limit output to this fact (repeatable)")
    facts.add_argument("--refresh", action="store_true", help="Ignore the cached snapshot")

    sub.add_parser("actions", help="List registered actions")

    run = sub.add_parser("run", help="Apply one or more actions in order")
    run.add_argument("action_ids", nargs="+", help="Action ids, applied left to right")
    run.add_argument("--refresh", action="store_true", help="Re-probe facts before evaluating preconditions")

    revert = sub.add_parser("revert", help="Run the revert steps of one action")
    revert.add_argument("action_id")

    sub.add_parser("restore", help="Run the emergency restore sequence")

    return parser


def _emit(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _run_cancellable(work: Callable[[threading.Event], T]) -> T:
    """Run ``work`` on a worker thread; Ctrl-C requests a cancel between sub-steps."""
    cancel = threading.Event()
    outcome: dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["value"] = work(cancel)
        except BaseException as exc:
            outcome["error"] = exc

    worker = threading.Thread(target=target, name="sysmaint-work")
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.2)
        except KeyboardInterrupt:
            print("cancel requested; finishing the current step", file=sys.stderr)
            cancel.set()
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        runtime = MaintenanceRuntime(settings)

        if args.command == "facts":
            snapshot = runtime.facts(args.keys, refresh=args.refresh)
            _emit(snapshot.to_dict())
            return 0

        if args.command == "actions":
            _emit({"actions": runtime.list_actions()})
            return 0

        if args.command == "run":
            batch = _run_cancellable(
                lambda cancel: runtime.run(args.action_ids, cancel=cancel, refresh=args.refresh)
            )
            _emit(batch.to_dict())
            return 1 if any(result.status in _FAILED for result in batch) else 0

        if args.command == "revert":
            result = _run_cancellable(lambda cancel: runtime.revert(args.action_id, cancel=cancel))
            _emit(result.to_dict())
            return 0 if result.succeeded else 1

        if args.command == "restore":
            result = _run_cancellable(lambda cancel: runtime.restore(cancel=cancel))
            _emit(result.to_dict())
            return 0 if result.succeeded else 1
    except (UnknownActionError, CatalogError) as exc:
        print(json.dumps({"error": str(exc)}, ensure_ascii=False), file=sys.stderr)
        return 2

    return 1


if __name__ == "__main__":
    raise SystemExit(main())

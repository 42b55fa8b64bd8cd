#!/usr/bin/env python3
"""Command-line entry point: one short-lived session per invocation."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from job_applier.log import configure, get_logger

log = get_logger(__name__)

COMMANDS = ("start", "resume", "pause", "approve", "decline", "process", "star", "status", "clear")


def _print_review(job) -> None:
    print()
    print(f"  {job.title} @ {job.organization}")
    print(f"  Match score: {job.compatibility_score}%")
    print(f"  {job.source_url}")
    print()
    for line in (job.generated_content or "").splitlines():
        print(f"    {line}")
    print()
    print("  Run `python run_agent.py approve` or `python run_agent.py decline`.")
    print()


def _parse(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Discover, review and apply to job postings.")
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("job_id", nargs="?", help="job id for `process` and `star`")
    parser.add_argument("--mock", action="store_true", help="use the offline page and analyzer")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)
    if args.command in ("process", "star") and not args.job_id:
        parser.error(f"{args.command} needs a job id")
    return args


def main(argv: list[str] | None = None) -> int:
    args = _parse(argv)
    if args.verbose:
        configure("DEBUG")

    from job_applier.agent import build, open_ports
    from job_applier.config import Settings
    from job_applier.errors import ExtractionError, PreflightError
    from job_applier.job_store import JobStore
    from job_applier.synchronizer import StateClient

    settings = Settings.load()
    supervisor = build(settings)

    # commands that never touch the page or the analyzer
    if args.command == "clear":
        supervisor.clear_all()
        return 0
    if args.command == "pause":
        StateClient(supervisor.bus).update(is_paused=True, is_processing=False)
        log.info("Processing paused")
        return 0
    if args.command == "star":
        try:
            job = JobStore(supervisor.storage).toggle_star(args.job_id)
        except KeyError:
            log.error("No job with id %s", args.job_id)
            return 1
        log.info("%s %s", "Starred" if job.starred else "Unstarred", job.id)
        return 0
    if args.command == "status":
        jobs = JobStore(supervisor.storage)
        state = StateClient(supervisor.bus).refresh()
        print(json.dumps({"state": state.to_dict(), "counts": jobs.counts()}, indent=2))
        for job in jobs.all():
            star = "*" if job.starred else " "
            score = "" if job.compatibility_score is None else f" [{job.compatibility_score}%]"
            error = f"  ({job.last_error})" if job.last_error else ""
            print(f" {star} {job.id:<24} {job.status.value:<10} {job.title} @ {job.organization}{score}{error}")
        return 0

    with open_ports(settings, mock=args.mock) as (page, analyzer):
        session = supervisor.open_session(
            page, analyzer, settings, need_credential=not args.mock, on_review=_print_review
        )
        try:
            if args.command == "resume":
                if not session.attach():
                    log.info("Nothing to resume")
            elif args.command == "start":
                if not session.attach():
                    inserted = session.controller.start()
                    log.info("Queued %d new job(s)", inserted)
            else:
                session.attach(resume=False)
                if args.command == "approve":
                    if session.controller.approve() is None:
                        return 1
                elif args.command == "decline":
                    if session.controller.decline() is None:
                        return 1
                elif args.command == "process":
                    if not session.controller.process_specific(args.job_id):
                        return 1
        except PreflightError as exc:
            log.error("Cannot start: %s", exc)
            for problem in exc.problems:
                print(f"  - {problem}")
            return 1
        except ExtractionError as exc:
            log.error("Cannot start: %s", exc)
            return 1
        finally:
            session.detach()
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Command-line trigger surface.

Each subcommand opens one session, runs one operation and prints JSON.
"""

import argparse
import json
import sys
from dataclasses import asdict
from datetime import timedelta
from typing import Optional, Sequence

from .core.config import settings
from .core.logging_config import setup_logging
from .database import SessionLocal, init_db, utcnow
from .exceptions import VizException
from .services import PipelineOrchestrator, TelemetryService


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _project_dict(project) -> dict:
    return {
        "id": project.id,
        "user_id": project.user_id,
        "filename": project.filename,
        "phase": project.phase,
        "status": project.status,
        "progress": project.progress,
        "token_usage": project.token_usage,
        "suggested_metaphors": project.suggested_metaphors,
        "needs_review": project.needs_review,
        "error_log": project.error_log,
    }


def _cmd_create(orchestrator: PipelineOrchestrator, args) -> int:
    columns = [c.strip() for c in args.columns.split(",") if c.strip()] if args.columns else []
    project = orchestrator.create_project(
        user_id=args.user,
        filename=args.filename,
        row_count=args.rows,
        columns=columns,
        dataset_summary=args.summary,
    )
    _print(_project_dict(project))
    return 0


def _cmd_analyze(orchestrator: PipelineOrchestrator, args) -> int:
    outcome = orchestrator.run_analysis_step(args.project_id)
    _print(asdict(outcome))
    return 1 if outcome.status == "failed" else 0


def _cmd_generate(orchestrator: PipelineOrchestrator, args) -> int:
    outcome = orchestrator.run_generation_step(args.project_id, args.selection)
    _print(asdict(outcome))
    return 1 if outcome.status == "failed" else 0


def _cmd_resume(orchestrator: PipelineOrchestrator, args) -> int:
    outcome = orchestrator.resume(args.project_id)
    _print(asdict(outcome))
    return 1 if outcome.status == "failed" else 0


def _cmd_show(orchestrator: PipelineOrchestrator, args) -> int:
    _print(_project_dict(orchestrator.get_project(args.project_id)))
    return 0


def _cmd_health(db, args) -> int:
    now = utcnow()
    report = TelemetryService(db).health_report(
        now - timedelta(hours=args.hours),
        now,
        min_success_rate=settings.health_min_success_rate,
        max_avg_duration_seconds=settings.health_max_avg_duration_seconds,
    )
    _print(report)
    return 0 if report["healthy"] else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vizai",
        description="Run and inspect the VizAI generation pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s create --user u1 --rows 1200 --columns date,region,revenue --filename sales.csv
  %(prog)s analyze <project-id>
  %(prog)s generate <project-id> flow-river-1
  %(prog)s worker --once
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Register an uploaded table and queue its analysis")
    create.add_argument("--user", required=True, help="Owning user id")
    create.add_argument("--rows", type=int, required=True, help="Row count of the table")
    create.add_argument("--columns", default="", help="Comma-separated header names")
    create.add_argument("--filename", default="", help="Original file name")
    create.add_argument("--summary", default="", help="Precomputed statistics text")

    analyze = sub.add_parser("analyze", help="Run the analysis step")
    analyze.add_argument("project_id")

    for name in ("generate", "select"):
        gen = sub.add_parser(name, help="Select a metaphor and run the visualization step")
        gen.add_argument("project_id")
        gen.add_argument("selection", nargs="?", default=None, help="Metaphor id or index")

    resume = sub.add_parser("resume", help="Resume a project from its recorded phase")
    resume.add_argument("project_id")

    show = sub.add_parser("show", help="Print a project")
    show.add_argument("project_id")

    worker = sub.add_parser("worker", help="Poll the job queue")
    worker.add_argument("--once", action="store_true", help="Run a single tick and exit")

    health = sub.add_parser("health", help="Print the pipeline health report")
    health.add_argument("--hours", type=int, default=24, help="Window size in hours (default: 24)")

    return parser


_HANDLERS = {
    "create": _cmd_create,
    "analyze": _cmd_analyze,
    "generate": _cmd_generate,
    "select": _cmd_generate,
    "resume": _cmd_resume,
    "show": _cmd_show,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # stdout carries the JSON result
    setup_logging(settings.log_level, settings.log_format, stream=sys.stderr)
    init_db()

    if args.command == "worker":
        from .worker import main as worker_main
        worker_main(settings, once=args.once)
        return 0

    db = SessionLocal()
    try:
        if args.command == "health":
            return _cmd_health(db, args)
        return _HANDLERS[args.command](PipelineOrchestrator(db, settings), args)
    except VizException as e:
        _print(e.to_dict())
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())

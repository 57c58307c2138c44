"""
Polling worker for pipeline jobs.

Every ``WORKER_POLL_INTERVAL`` seconds a fresh session recovers jobs left
running by a killed invocation, then claims and runs at most one due job.
No state is kept between ticks: the job table is the only source of truth,
so any number of workers (or a cron hitting ``POST /api/jobs/run-next``)
can run side by side.

Usage:
    vizai worker [--once]
"""

import logging
import time
from typing import Optional

from .core.config import Settings, settings as default_settings
from .database import SessionLocal
from .generation import Generator
from .services import PipelineOrchestrator, StepOutcome

logger = logging.getLogger("vizai.worker")


def run_once(
    settings: Optional[Settings] = None,
    generator: Optional[Generator] = None,
    session_factory=SessionLocal,
) -> Optional[StepOutcome]:
    """One scheduler tick. Returns the outcome, or None when nothing was due."""
    settings = settings or default_settings
    db = session_factory()
    try:
        outcome = PipelineOrchestrator(db, settings, generator=generator).run_next_due()
        if outcome:
            logger.info(
                f"Job {outcome.job_id} for project {outcome.project_id}: {outcome.status} ({outcome.phase})",
                extra={"job_id": outcome.job_id, "project_id": outcome.project_id},
            )
        return outcome
    finally:
        db.close()


def main(settings: Optional[Settings] = None, once: bool = False) -> None:
    """Poll for due jobs and process them one at a time."""
    settings = settings or default_settings
    interval = settings.worker_poll_interval
    logger.info(f"Worker started, polling every {interval}s")

    while True:
        try:
            outcome = run_once(settings)
            if once:
                break
            if outcome is None:
                time.sleep(interval)
        except KeyboardInterrupt:
            logger.info("Worker shutting down")
            break
        except Exception as e:
            # A failed tick must not kill the loop; the job row is recovered
            # as stale on a later tick.
            logger.error(f"Worker error: {e}", exc_info=True)
            if once:
                raise
            time.sleep(interval)


if __name__ == "__main__":
    from .core.logging_config import setup_logging
    from .database import init_db

    setup_logging(default_settings.log_level, default_settings.log_format)
    init_db()
    main()

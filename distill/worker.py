"""Background tick driver for queued and running runs."""

import logging
import time
from typing import List

import sqlalchemy
from sqlalchemy.orm import Session

from distill.config import settings
from distill.database import SessionLocal
from distill.enums import RunStatus
from distill.errors import TickInProgressError
from distill.llm.client import LLMClient
from distill.models import Run
from distill.services.tick import process_tick

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

ACTIVE_RUN_STATUSES = (RunStatus.QUEUED.value, RunStatus.RUNNING.value)


class Worker:
    """Calls tick on every active run until stopped."""

    def __init__(self, llm_client: LLMClient = None, session_factory=SessionLocal):
        self.llm_client = llm_client or LLMClient()
        self.session_factory = session_factory
        self.poll_interval = settings.WORKER_POLL_INTERVAL
        self.max_jobs = settings.TICK_MAX_JOBS

    def wait_for_database(self, max_wait: int = 60) -> bool:
        """Wait until the runs table is queryable."""
        waited = 0
        while waited < max_wait:
            db = self.session_factory()
            try:
                db.execute(sqlalchemy.text("SELECT 1 FROM runs LIMIT 1"))
                logger.info("Database is ready, starting worker loop")
                return True
            except Exception as e:
                logger.info(f"Waiting for database ({waited}s): {e}")
            finally:
                db.close()
            time.sleep(2)
            waited += 2
        logger.error(f"Database not ready after {max_wait} seconds, starting anyway...")
        return False

    def active_run_ids(self, db: Session) -> List[str]:
        rows = (
            db.query(Run.id)
            .filter(Run.status.in_(ACTIVE_RUN_STATUSES))
            .order_by(Run.created_at)
            .all()
        )
        return [row[0] for row in rows]

    def run_once(self) -> int:
        """Tick each active run once. Returns the number of jobs processed."""
        processed = 0
        db = self.session_factory()
        try:
            for run_id in self.active_run_ids(db):
                try:
                    result = process_tick(db, run_id, max_jobs=self.max_jobs, llm_client=self.llm_client)
                except TickInProgressError:
                    logger.info(f"Run {run_id} is being ticked elsewhere, skipping")
                    continue
                processed += result.processed
                if result.processed:
                    logger.info(f"Run {run_id}: {result.processed} job(s), status {result.run_status}")
        finally:
            db.close()
        return processed

    def run(self, stop_event=None):
        """Main worker loop.

        Args:
            stop_event: Optional threading.Event to signal worker to stop
        """
        logger.info("Worker started - waiting for database to be ready...")
        self.wait_for_database()

        while True:
            if stop_event and stop_event.is_set():
                logger.info("Worker stop signal received")
                break

            try:
                if self.run_once() == 0:
                    time.sleep(self.poll_interval)
            except KeyboardInterrupt:
                logger.info("Worker shutting down")
                break
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
                time.sleep(self.poll_interval)


def worker_loop(stop_event=None):
    """Run worker loop (for use as background thread)."""
    worker = Worker()
    worker.run(stop_event=stop_event)


def main():
    """Entry point for standalone worker."""
    worker = Worker()
    worker.run()


if __name__ == "__main__":
    main()

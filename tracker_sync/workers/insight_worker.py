"""
Insight job outbox.

Webhooks and sync callers enqueue InsightJob rows instead of calling the
generator inline. A job row is committed first and a wake-up message is
published to RabbitMQ afterwards; the row is the durable record, so a lost
message only delays processing until the next scheduled drain.
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, update, or_, and_
from sqlalchemy.orm import Session

from tracker_sync.core.config import get_settings
from tracker_sync.core.logging_config import get_logger, setup_logging
from tracker_sync.core.utils import DateTimeHelper
from tracker_sync.insights.insight_generator import InsightGenerator
from tracker_sync.models.unified_models import InsightJob, TrackerConfiguration
from tracker_sync.workers.queue_manager import QueueManager, get_queue_manager

logger = get_logger(__name__)


class InsightJobDispatcher:
    """Enqueues and runs insight jobs for one database session."""

    def __init__(self, session: Session, queue_manager: Optional[QueueManager] = None,
                 generator_factory: Optional[Callable[[Session], InsightGenerator]] = None):
        self.session = session
        self.settings = get_settings()
        self._queue_manager = queue_manager
        self.generator_factory = generator_factory or InsightGenerator

    @property
    def queue_manager(self) -> Optional[QueueManager]:
        if self._queue_manager is None and self.settings.QUEUE_PUBLISH_ENABLED:
            self._queue_manager = get_queue_manager()
        return self._queue_manager

    def enqueue(self, config_id: int, insight_type: str, issue_ids: Optional[List[str]] = None,
                project_keys: Optional[List[str]] = None, reason: Optional[str] = None) -> InsightJob:
        """
        Commit a pending job, then publish a wake-up message.

        Publishing failures are logged only; the committed row will still be
        picked up by the next drain.
        """
        job = InsightJob(
            config_id=config_id,
            insight_type=insight_type,
            issue_ids=[str(i) for i in issue_ids or []],
            project_keys=list(project_keys or []),
            reason=reason,
            status='pending',
            attempts=0,
        )
        self.session.add(job)
        self.session.commit()
        logger.info(f"Enqueued {insight_type} job {job.id} for configuration {config_id} ({reason})")

        if self.queue_manager is not None:
            if not self.queue_manager.publish_insight_job(config_id, job.id, insight_type):
                logger.warning(f"Wake-up message for job {job.id} was not published; it will run on the next drain")

        return job

    def _claimable(self):
        max_attempts = self.settings.INSIGHT_JOB_MAX_ATTEMPTS
        return or_(
            InsightJob.status == 'pending',
            and_(InsightJob.status == 'failed', InsightJob.attempts < max_attempts)
        )

    def try_claim(self, job_id: int) -> bool:
        """
        Flip one job to running and count the attempt, only if it is still
        claimable. The status check is part of the UPDATE, so when two
        drains race for the same row exactly one of them sees rowcount 1.
        """
        result = self.session.execute(
            update(InsightJob)
            .where(InsightJob.id == job_id, self._claimable())
            .values(status='running', attempts=InsightJob.attempts + 1, last_error=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def claim_pending(self, limit: int) -> List[InsightJob]:
        """Claim pending jobs plus failed jobs that still have attempts left, oldest first."""
        candidate_ids = list(self.session.execute(
            select(InsightJob.id).where(self._claimable()).order_by(InsightJob.id).limit(limit)
        ).scalars())

        claimed_ids = [job_id for job_id in candidate_ids if self.try_claim(job_id)]
        self.session.commit()

        if len(claimed_ids) < len(candidate_ids):
            logger.debug(f"{len(candidate_ids) - len(claimed_ids)} insight jobs were claimed by another worker")
        if not claimed_ids:
            return []

        return list(self.session.execute(
            select(InsightJob).where(InsightJob.id.in_(claimed_ids)).order_by(InsightJob.id)
            .execution_options(populate_existing=True)
        ).scalars())

    async def run_job(self, job: InsightJob) -> bool:
        """Run one claimed job, recording done/failed on the row. Returns True on success."""
        try:
            config = self.session.get(TrackerConfiguration, job.config_id)
            if config is None:
                raise LookupError(f"Configuration {job.config_id} no longer exists")

            generator = self.generator_factory(self.session)
            insights = await generator.generate(
                config, job.insight_type,
                issue_ids=job.issue_ids or None,
                project_keys=job.project_keys or None
            )
            job.set_done(DateTimeHelper.now_utc())
            self.session.commit()
            logger.info(f"Insight job {job.id} ({job.insight_type}) produced {len(insights)} insights")
            return True

        except Exception as e:
            self.session.rollback()
            job.set_failed(f"{type(e).__name__}: {e}", DateTimeHelper.now_utc())
            self.session.commit()
            logger.error(
                f"Insight job {job.id} ({job.insight_type}) failed on attempt "
                f"{job.attempts}/{self.settings.INSIGHT_JOB_MAX_ATTEMPTS}: {e}"
            )
            return False

    async def process_pending(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Drain up to `limit` claimable jobs sequentially.

        Returns:
            {"claimed": int, "succeeded": int, "failed": int}
        """
        jobs = self.claim_pending(limit or self.settings.INSIGHT_JOB_BATCH_SIZE)
        succeeded = 0
        for job in jobs:
            if await self.run_job(job):
                succeeded += 1

        if jobs:
            logger.info(f"Processed {len(jobs)} insight jobs: {succeeded} succeeded, {len(jobs) - succeeded} failed")
        return {'claimed': len(jobs), 'succeeded': succeeded, 'failed': len(jobs) - succeeded}


def drain_insight_jobs(database, limit: Optional[int] = None) -> Dict[str, int]:
    """Blocking drain used by the scheduler and the standalone worker."""
    session = database.get_session()
    try:
        return asyncio.run(InsightJobDispatcher(session).process_pending(limit))
    finally:
        session.close()


def run_insight_worker(poll_interval: float = 1.0):
    """
    Standalone consumer: polls every configuration's insight queue and drains
    the outbox whenever a wake-up message arrives (and on every idle interval).
    """
    from tracker_sync.core.database import get_database

    setup_logging()
    settings = get_settings()
    database = get_database()
    queue_manager = get_queue_manager()
    idle_drain_every = max(1, int(settings.INSIGHT_JOB_INTERVAL_SECONDS / poll_interval))

    logger.info("Insight worker started")
    polls = 0
    try:
        while True:
            polls += 1
            with database.get_session_context() as session:
                config_ids = list(session.execute(
                    select(TrackerConfiguration.id).where(TrackerConfiguration.sync_enabled.is_(True))
                ).scalars())

            woken = False
            for config_id in config_ids:
                message = queue_manager.get_single_message(QueueManager.get_insight_queue_name(config_id))
                if message:
                    logger.info(f"Wake-up received for configuration {config_id}: {message}")
                    woken = True

            if woken or polls % idle_drain_every == 0:
                drain_insight_jobs(database)
            else:
                time.sleep(poll_interval)
    except KeyboardInterrupt:
        logger.info("Insight worker stopped")


if __name__ == "__main__":
    run_insight_worker()

import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..core.config import Settings
from ..core.logger import get_logger, log_operation
from ..models.resource import CacheConfig
from ..services.socrata_client import SocrataClient
from ..services.webhook_service import WebhookService
from .base_job import BaseJob, JobResult
from .download_pending import DownloadPendingDatasetsJob
from .fresh_dataset_lookup import FreshDatasetLookupJob
from .retention_cleanup import RetentionCleanupJob

logger = get_logger(__name__)


@dataclass
class ScheduledJob:
    job: BaseJob
    interval_seconds: float
    start_delay_seconds: float = 0.0
    thread: Optional[threading.Thread] = field(default=None, repr=False)
    runs: int = 0


def run_job(job: BaseJob, session_factory: Callable) -> Optional[JobResult]:
    """
    Run one cycle of a job in its own database session.

    Errors are logged and not raised, so the schedule keeps going.
    """
    db = session_factory()
    try:
        with log_operation(f"Running {job.name}", logger=logger, job=job.name):
            result = job.run(db=db)
        for error in result.errors:
            logger.error(f"{job.name}: {error.get('error')}", extra={"job": job.name, **error})
        return result
    except Exception:
        # log_operation already recorded the traceback
        return None
    finally:
        db.close()


class JobScheduler:
    """
    Runs each registered job periodically on its own thread.

    A job's next run starts only after its previous run returned, so the same
    job never overlaps with itself; different jobs run concurrently.
    """

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory
        self.jobs: List[ScheduledJob] = []
        self._stop = threading.Event()

    def add_job(self, job: BaseJob, interval_seconds: float, start_delay_seconds: float = 0.0) -> ScheduledJob:
        scheduled = ScheduledJob(job=job, interval_seconds=interval_seconds, start_delay_seconds=start_delay_seconds)
        self.jobs.append(scheduled)
        return scheduled

    @property
    def running(self) -> bool:
        return any(s.thread is not None and s.thread.is_alive() for s in self.jobs)

    def start(self) -> None:
        self._stop.clear()
        for scheduled in self.jobs:
            scheduled.thread = threading.Thread(
                target=self._loop,
                args=(scheduled,),
                name=f"job-{scheduled.job.name}",
                daemon=True,
            )
            scheduled.thread.start()
        logger.info(f"Scheduler started with {len(self.jobs)} job(s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop scheduling and wait for runs in progress to finish."""
        self._stop.set()
        for scheduled in self.jobs:
            if scheduled.thread is not None:
                scheduled.thread.join(timeout)
        logger.info("Scheduler stopped")

    def _loop(self, scheduled: ScheduledJob) -> None:
        if self._stop.wait(scheduled.start_delay_seconds):
            return
        while not self._stop.is_set():
            run_job(scheduled.job, self.session_factory)
            scheduled.runs += 1
            if self._stop.wait(scheduled.interval_seconds):
                return


def build_scheduler(
    settings: Settings,
    cache_config: CacheConfig,
    session_factory: Callable,
    notifier: Optional[WebhookService] = None,
) -> JobScheduler:
    """Wire the three cache jobs with the intervals from settings."""
    client = SocrataClient(cache_config.base_url, timeout=settings.HTTP_TIMEOUT_SECONDS)
    resources = cache_config.resources

    scheduler = JobScheduler(session_factory)
    scheduler.add_job(
        FreshDatasetLookupJob(resources, client, notifier=notifier),
        interval_seconds=settings.LOOKUP_INTERVAL_MINUTES * 60,
    )
    scheduler.add_job(
        DownloadPendingDatasetsJob(resources, client, settings.DOWNLOADS_ROOT_PATH, notifier=notifier),
        interval_seconds=settings.DOWNLOAD_INTERVAL_MINUTES * 60,
        start_delay_seconds=settings.JOB_START_DELAY_SECONDS,
    )
    scheduler.add_job(
        RetentionCleanupJob(
            resources,
            settings.DOWNLOADS_ROOT_PATH,
            retention_days=cache_config.retention_days,
            retention_size_bytes=cache_config.retention_size_bytes,
            notifier=notifier,
        ),
        interval_seconds=settings.CLEANUP_INTERVAL_MINUTES * 60,
        start_delay_seconds=settings.JOB_START_DELAY_SECONDS,
    )
    return scheduler

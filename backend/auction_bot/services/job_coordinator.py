"""Run at most one search job per user, outside the webhook request cycle."""

import asyncio
import time
from typing import Awaitable, Callable, Optional, Protocol

from auction_bot.core.config import Settings, settings as default_settings
from auction_bot.core.errors import AutomationError, FailureKind, UnknownError
from auction_bot.core.logger import logger
from auction_bot.services.models import AutomationJob, JobOutcome, JobStatus, SearchCriteria
from auction_bot.services.stores import InMemoryStore, KeyedStore

class SearchRunner(Protocol):
    async def run(self, criteria: SearchCriteria, user_id: str = None) -> list: ...

OnComplete = Callable[[JobOutcome], Awaitable[None]]

class JobCoordinator:
    """Owns the user_id -> AutomationJob mapping.

    `submit` schedules the driver on the running event loop and returns
    immediately. When the job ends the caller's continuation receives exactly
    one JobOutcome; afterwards the job entry is removed and `on_finished`
    (the conversation's session cleanup) is called.
    """

    def __init__(
        self,
        driver: SearchRunner,
        on_finished: Callable[[str], None] = None,
        config: Settings = None,
        store: KeyedStore = None,
    ):
        self.driver = driver
        self.on_finished = on_finished
        self.settings = config or default_settings
        self.jobs: KeyedStore = store if store is not None else InMemoryStore()
        self._tasks: set = set()

    def get(self, user_id: str) -> Optional[AutomationJob]:
        return self.jobs.get(user_id)

    def is_running(self, user_id: str) -> bool:
        job = self.jobs.get(user_id)
        return job is not None and job.status is JobStatus.RUNNING

    def submit(self, user_id: str, criteria: SearchCriteria, on_complete: OnComplete) -> bool:
        """
        Start a search job for a user.

        Returns:
            False without doing anything when the user already has a running
            job, True once the job has been scheduled.
        """
        if self.is_running(user_id):
            logger.info("Search already running, submit rejected", extra={'user_id': user_id, 'status': 'rejected'})
            return False

        job = AutomationJob(user_id=user_id, criteria=criteria)
        self.jobs.set(user_id, job)
        job.task = asyncio.create_task(self._run(job, on_complete), name=f"search-{user_id}")
        self._tasks.add(job.task)
        job.task.add_done_callback(self._tasks.discard)
        logger.info("Search job started", extra={'user_id': user_id, 'status': 'running'})
        return True

    async def _execute(self, job: AutomationJob) -> JobOutcome:
        try:
            records = await asyncio.wait_for(
                self.driver.run(job.criteria, user_id=job.user_id),
                timeout=self.settings.job_timeout_seconds,
            )
            return JobOutcome(user_id=job.user_id, records=list(records))
        except asyncio.TimeoutError:
            return JobOutcome(
                user_id=job.user_id,
                failure=FailureKind.NAVIGATION_TIMEOUT,
                detail=f"Search exceeded {self.settings.job_timeout_seconds}s",
            )
        except AutomationError as e:
            logger.warning(f"Search failed: {e}", extra={'user_id': job.user_id, 'kind': e.kind.value})
            if e.diagnostic:
                logger.debug(f"Failure diagnostic: {e.diagnostic}", extra={'user_id': job.user_id})
            return JobOutcome(user_id=job.user_id, failure=e.kind, detail=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error in search job: {e}", extra={'user_id': job.user_id})
            error = UnknownError(f"{type(e).__name__}: {e}", diagnostic={"exception": repr(e)})
            return JobOutcome(user_id=job.user_id, failure=error.kind, detail=str(error))

    async def _run(self, job: AutomationJob, on_complete: OnComplete):
        start = time.monotonic()
        try:
            outcome = await self._execute(job)
            job.status = JobStatus.SUCCEEDED if outcome.succeeded else JobStatus.FAILED
            job.failure_kind = outcome.failure
            logger.info(
                f"Search job finished: {job.status.value}",
                extra={'user_id': job.user_id, 'status': job.status.value,
                       'count': len(outcome.records),
                       'kind': outcome.failure.value if outcome.failure else None,
                       'duration_ms': int((time.monotonic() - start) * 1000)}
            )
            try:
                await on_complete(outcome)
            except Exception as e:
                logger.error(f"Delivering search outcome failed: {e}", extra={'user_id': job.user_id})
        finally:
            if self.jobs.get(job.user_id) is job:
                self.jobs.delete(job.user_id)
            if self.on_finished is not None:
                self.on_finished(job.user_id)

    async def join(self, user_id: str):
        """Wait for the user's current job, if any, to finish."""
        job = self.jobs.get(user_id)
        if job is not None and job.task is not None:
            await asyncio.shield(job.task)

    async def shutdown(self):
        """Cancel running jobs at process stop. Browsers are released as tasks unwind."""
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

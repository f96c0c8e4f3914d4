"""Background worker and dispatch trigger for plan generation jobs."""

import asyncio
import concurrent.futures
import logging
from typing import Optional, Set

from planner.models.job import JobStatus
from planner.schemas.job import PlanInput
from planner.services.job_store import JobNotFound, JobStore, job_error
from planner.services.prompts import build_generation_request
from planner.services.retry import GenerationFailure, QuotaExhausted, RetryController
from planner.services.validators import validate_plan_html

logger = logging.getLogger(__name__)

QUOTA_EXHAUSTED = "QUOTA_EXHAUSTED"
REQUEST_FAILED = "REQUEST_FAILED"
INVALID_OUTPUT = "INVALID_OUTPUT"


class PlanWorker:
    """Performs the single processing stage of one job."""

    def __init__(self, store: JobStore, controller: RetryController):
        """Initialize worker."""
        self.store = store
        self.controller = controller

    async def process(self, job_id: str) -> None:
        """
        Run one job from pending to a terminal state.

        Raises:
            JobNotFound: If the job does not exist
        """
        job = await asyncio.to_thread(self.store.get, job_id)
        if job.job_status.is_terminal:
            logger.warning(f"Job {job_id} is already {job.status}, skipping")
            return

        if not await asyncio.to_thread(self.store.claim, job_id):
            logger.warning(f"Job {job_id} was claimed by another worker, skipping")
            return

        logger.info(f"Processing job {job_id}")

        plan_input = PlanInput.model_validate(job.input)
        request = build_generation_request(plan_input)

        try:
            result = await self.controller.call(request)
        except QuotaExhausted:
            logger.error(f"Job {job_id} failed: generation quota exhausted")
            await self._fail(job_id, QUOTA_EXHAUSTED, "Generation quota exhausted (billing or project limit reached)")
            return
        except GenerationFailure as e:
            logger.error(f"Job {job_id} failed after {e.attempt} attempt(s): {e.message}")
            await self._fail(job_id, REQUEST_FAILED, e.message)
            return

        if not validate_plan_html(result.output_text):
            logger.error(f"Job {job_id} produced output that is not HTML")
            await self._fail(job_id, INVALID_OUTPUT, "Generated output is not an HTML document")
            return

        attempts = (job.metrics or {}).get("attempts", 0) + 1
        await asyncio.to_thread(
            self.store.update,
            job_id,
            status=JobStatus.DONE.value,
            stage=2,
            output=result.output_text.strip(),
            metrics={"attempts": attempts},
        )
        logger.info(f"Job {job_id} completed successfully")

    async def _fail(self, job_id: str, code: str, message: str) -> None:
        await asyncio.to_thread(
            self.store.update,
            job_id,
            status=JobStatus.ERROR.value,
            stage=1,
            error=job_error(code, message),
        )


class JobDispatcher:
    """Invokes the worker once for every created job, best effort.

    Subscribed to the job store's creation events. Dispatch and worker
    failures are logged and never retried; a job that outlives the
    wall-clock budget stays non-terminal and is reported as stale.
    """

    def __init__(self, worker: PlanWorker, wall_clock_budget: float):
        """Initialize dispatcher."""
        self.worker = worker
        self.wall_clock_budget = wall_clock_budget
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._inflight: Set[concurrent.futures.Future] = set()

    def start(self) -> None:
        """Bind to the running event loop. Call from application startup."""
        self._loop = asyncio.get_running_loop()
        logger.info("Job dispatcher started")

    def dispatch(self, job_id: str) -> None:
        """Schedule the worker for a job; safe to call from any thread."""
        if self._loop is None or self._loop.is_closed():
            logger.error(f"Dispatcher not running, job {job_id} left pending")
            return

        try:
            future = asyncio.run_coroutine_threadsafe(self._run(job_id), self._loop)
        except RuntimeError as e:
            logger.error(f"Failed to dispatch job {job_id}: {e}")
            return

        self._inflight.add(future)
        future.add_done_callback(self._inflight.discard)
        logger.info(f"Dispatched job {job_id}")

    async def _run(self, job_id: str) -> None:
        try:
            await asyncio.wait_for(self.worker.process(job_id), timeout=self.wall_clock_budget)
        except asyncio.TimeoutError:
            logger.error(
                f"Job {job_id} exceeded the {self.wall_clock_budget:g}s wall-clock budget, left non-terminal"
            )
        except JobNotFound:
            logger.error(f"Job {job_id} not found, nothing to process")
        except Exception as e:
            logger.error(f"Job {job_id} worker error: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait for every dispatched job to finish."""
        while self._inflight:
            await asyncio.gather(
                *(asyncio.wrap_future(f) for f in list(self._inflight)),
                return_exceptions=True,
            )

    async def stop(self) -> None:
        """Cancel in-flight jobs and detach from the loop."""
        for future in list(self._inflight):
            future.cancel()
        self._inflight.clear()
        self._loop = None
        logger.info("Job dispatcher stopped")

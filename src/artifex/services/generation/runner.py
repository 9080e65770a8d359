"""In-process runner keeping orchestrations alive independently of HTTP requests."""

import asyncio
from uuid import UUID

import structlog

from artifex.models.generation_job import GenerationJob
from artifex.services.generation.orchestrator import JobOrchestrator, JobOutcome
from artifex.services.providers.base import GenerationRequest

logger = structlog.get_logger()


class JobRunner:
    """Runs each job on its own asyncio task.

    A caller that stops waiting (client disconnect) only cancels its wait, never the
    job, so quota and history stay consistent.
    """

    def __init__(self, orchestrator: JobOrchestrator):
        self.orchestrator = orchestrator
        self._tasks: dict[UUID, asyncio.Task] = {}
        self._jobs: dict[UUID, GenerationJob] = {}

    def start(self, job: GenerationJob, request: GenerationRequest) -> asyncio.Task:
        """Schedule a created job and return its task."""
        task = asyncio.create_task(
            self.orchestrator.execute(job, request), name=f"generation-job-{job.id}"
        )
        self._tasks[job.id] = task
        self._jobs[job.id] = job
        task.add_done_callback(lambda finished: self._on_done(job.id, finished))
        return task

    def _on_done(self, job_id: UUID, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        self._jobs.pop(job_id, None)

        if task.cancelled():
            logger.warning("job.cancelled", job_id=str(job_id))
            return

        exc = task.exception()
        if exc:
            logger.error(
                "job.crashed",
                job_id=str(job_id),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=exc,
            )

    def get(self, job_id: UUID) -> GenerationJob | None:
        """In-flight job, or None once it finished (read the history store then)."""
        return self._jobs.get(job_id)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def run(self, job: GenerationJob, request: GenerationRequest) -> JobOutcome:
        """Start a job and wait for its outcome."""
        return await asyncio.shield(self.start(job, request))

    async def wait(self, job_id: UUID) -> JobOutcome:
        """Wait for an in-flight job.

        Raises:
            KeyError: Job is not in flight
        """
        return await asyncio.shield(self._tasks[job_id])

    async def drain(self) -> None:
        """Wait for every in-flight job (application shutdown)."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info("runner.draining", in_flight=len(tasks))
        await asyncio.gather(*tasks, return_exceptions=True)

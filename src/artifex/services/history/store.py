"""History store: one immutable record per generation attempt."""

from typing import Callable, Protocol

import structlog
from sqlalchemy.exc import SQLAlchemyError

from artifex.models.generation_job import GenerationJob
from artifex.services.exceptions import HistoryStoreError

logger = structlog.get_logger()


class HistoryStore(Protocol):
    """Persists finished jobs. ``record`` raises HistoryStoreError on failure."""

    async def record(self, job: GenerationJob) -> None: ...


class DatabaseHistoryStore:
    """History store writing finished jobs to the generation_jobs table."""

    def __init__(self, uow_factory: Callable):
        self.uow_factory = uow_factory

    async def record(self, job: GenerationJob) -> None:
        """Insert the job row in its own transaction.

        The instance is copied so the caller's object never becomes bound to the
        session.

        Raises:
            HistoryStoreError: Insert failed (including a second record for the same id)
        """
        row = GenerationJob.model_validate(job.model_dump())
        try:
            async with await self.uow_factory() as uow:
                await uow.jobs.add(row)
        except SQLAlchemyError as e:
            raise HistoryStoreError(f"Could not write history for job {job.id}: {e}") from e
        logger.debug("history.recorded", job_id=str(job.id), state=job.state.value)


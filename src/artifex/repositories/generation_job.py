"""GenerationJob repository.

Provides data access methods for GenerationJob history records.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from artifex.models.generation_job import GenerationJob


class GenerationJobRepository:
    """Repository for GenerationJob entities.

    Rows are written once, after the job reached a terminal state.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist a finished job.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve job by UUID.

        Args:
            job_id: Job's unique identifier

        Returns:
            GenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob).where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_owner_paginated(
        self, owner_id: str, offset: int = 0, limit: int = 20
    ) -> tuple[list[GenerationJob], int]:
        """Retrieve an owner's jobs with pagination and total count.

        Args:
            owner_id: Owner identifier
            offset: Number of jobs to skip (default: 0)
            limit: Maximum number of jobs to return (default: 20)

        Returns:
            Tuple of (jobs list, total count) where:
            - jobs: Jobs for the current page (newest first)
            - total: Total number of jobs of the owner (across all pages)
        """
        count_stmt = select(func.count(GenerationJob.id)).where(  # type: ignore[arg-type]
            GenerationJob.owner_id == owner_id  # type: ignore[arg-type]
        )
        count_result = await self.session.execute(count_stmt)
        total = count_result.scalar() or 0

        data_stmt = (
            select(GenerationJob)
            .where(GenerationJob.owner_id == owner_id)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .offset(offset)
            .limit(limit)
        )
        data_result = await self.session.execute(data_stmt)
        jobs = list(data_result.scalars().all())

        return (jobs, total)

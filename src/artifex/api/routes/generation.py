"""Generation API endpoints.

- POST /api/generate/{kind} - Start a generation job (waits for the outcome by default)
- GET /api/jobs/{job_id} - Status of an in-flight or finished job
- GET /api/generations - Paginated generation history of the caller
"""

from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from artifex.api.dependencies import Caller, get_current_caller, get_job_runner, get_uow_factory
from artifex.api.responses import (
    ApiError,
    GenerationsEnvelope,
    GenerationsPage,
    JobEnvelope,
    job_failure_error,
    job_to_dto,
)
from artifex.models.generation_job import GenerationKind
from artifex.services.generation.orchestrator import JobFailed
from artifex.services.generation.runner import JobRunner
from artifex.services.providers.base import GenerationRequest, ImageInput

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["generation"])


class GenerateRequest(BaseModel):
    """Request body for every generation kind."""

    prompt: str = Field(..., description="Text prompt")
    images: list[ImageInput] = Field(
        default_factory=list,
        description="Input images, each {url} or {data} (base64, optional data: URI prefix)",
    )
    parameters: dict[str, Any] = Field(
        default_factory=dict,
        description="quality, batch_size, aspect_ratio, style, seed, negative_prompt, "
        "duration, cfg_scale ...",
    )


@router.post(
    "/generate/{kind}",
    response_model=JobEnvelope,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
async def generate(
    kind: GenerationKind,
    body: GenerateRequest,
    wait: bool = Query(default=True, description="Wait for the terminal outcome"),
    caller: Caller = Depends(get_current_caller),
    runner: JobRunner = Depends(get_job_runner),
):
    """Start a generation job.

    With ``wait=true`` the response carries the final outcome: 200 with the outputs,
    or the failure envelope with a status derived from the failure reason. With
    ``wait=false`` the job keeps running in the background and 202 is returned
    with its id; poll GET /api/jobs/{job_id}.
    """
    request = GenerationRequest(
        kind=kind, prompt=body.prompt, images=body.images, parameters=body.parameters
    )
    job = runner.orchestrator.create_job(caller.user_id, caller.tier, request)

    if not wait and not job.state.is_terminal:
        runner.start(job, request)
        envelope = JobEnvelope(data=job_to_dto(job))
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=envelope.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    outcome = await runner.run(job, request)
    if isinstance(outcome, JobFailed):
        raise job_failure_error(outcome.job)
    return JobEnvelope(data=job_to_dto(outcome.job))


@router.get("/jobs/{job_id}", response_model=JobEnvelope, response_model_exclude_none=True)
async def get_job(
    job_id: UUID,
    caller: Caller = Depends(get_current_caller),
    runner: JobRunner = Depends(get_job_runner),
    uow_factory=Depends(get_uow_factory),
) -> JobEnvelope:
    """Status of one job; only its owner can read it.

    Raises:
        ApiError: 404 JOB_NOT_FOUND if the job does not exist or belongs to someone else
    """
    job = runner.get(job_id)
    if job is None:
        async with await uow_factory() as uow:
            job = await uow.jobs.get_by_id(job_id)

    if job is None or job.owner_id != caller.user_id:
        raise ApiError(status.HTTP_404_NOT_FOUND, "JOB_NOT_FOUND", f"Job {job_id} not found")

    return JobEnvelope(data=job_to_dto(job))


@router.get(
    "/generations", response_model=GenerationsEnvelope, response_model_exclude_none=True
)
async def list_generations(
    offset: int = Query(default=0, ge=0, description="Number of jobs to skip"),
    limit: int = Query(default=20, ge=1, le=100, description="Maximum jobs per page"),
    caller: Caller = Depends(get_current_caller),
    uow_factory=Depends(get_uow_factory),
) -> GenerationsEnvelope:
    """Caller's generation history, newest first."""
    async with await uow_factory() as uow:
        jobs, total = await uow.jobs.get_by_owner_paginated(
            caller.user_id, offset=offset, limit=limit
        )

    logger.debug("generations.listed", owner_id=caller.user_id, count=len(jobs), total=total)
    return GenerationsEnvelope(
        data=GenerationsPage(
            jobs=[job_to_dto(job) for job in jobs], total=total, offset=offset, limit=limit
        )
    )

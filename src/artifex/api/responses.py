"""Response envelopes and failure-to-HTTP mapping.

Every response body is either ``{"success": true, "data": ...}`` or
``{"success": false, "message": ..., "code": ...}`` with a stable ``code``.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from artifex.models.generation_job import FailureReason, GenerationJob, JobState
from artifex.services.exceptions import ProviderErrorKind


class ApiError(Exception):
    """Error rendered as a failure envelope by the application exception handler."""

    def __init__(self, status_code: int, code: str, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.job_id = job_id


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MediaAssetDTO(CamelModel):
    """One output of a job."""

    url: str = Field(..., description="Durable URL when persisted, provider URL otherwise")
    source_url: str
    durable_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    byte_size: Optional[int] = None
    persisted: bool = Field(..., description="False when the upload to storage failed")


class JobErrorDTO(CamelModel):
    code: str
    message: str


class JobDTO(CamelModel):
    """Data Transfer Object for generation jobs in API responses."""

    job_id: str
    state: JobState
    kind: str
    cost_units: int
    outputs: Optional[list[MediaAssetDTO]] = None
    error: Optional[JobErrorDTO] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class JobEnvelope(CamelModel):
    success: bool = True
    data: JobDTO


class GenerationsPage(CamelModel):
    """Paginated generation history."""

    jobs: list[JobDTO]
    total: int = Field(..., description="Total number of jobs (across all pages)")
    offset: int
    limit: int


class GenerationsEnvelope(CamelModel):
    success: bool = True
    data: GenerationsPage


class QuotaDTO(CamelModel):
    tier: str
    monthly_limit: int
    used: int
    reserved: int
    remaining: int


class QuotaEnvelope(CamelModel):
    success: bool = True
    data: QuotaDTO


class ErrorEnvelope(CamelModel):
    success: bool = False
    message: str
    code: str
    job_id: Optional[str] = None


def job_to_dto(job: GenerationJob) -> JobDTO:
    outputs = None
    if job.state is JobState.COMPLETED:
        outputs = [
            MediaAssetDTO(
                url=asset.url,
                source_url=asset.source_url,
                durable_url=asset.durable_url,
                thumbnail_url=asset.thumbnail_url,
                width=asset.width,
                height=asset.height,
                format=asset.format,
                byte_size=asset.byte_size,
                persisted=asset.persisted,
            )
            for asset in job.assets
        ]

    error = None
    if job.state is JobState.FAILED and job.failure_reason is not None:
        error = JobErrorDTO(code=job.failure_reason.code, message=failure_message(job))

    return JobDTO(
        job_id=str(job.id),
        state=job.state,
        kind=job.kind.value,
        cost_units=job.cost_units,
        outputs=outputs,
        error=error,
        created_at=job.created_at,
        completed_at=job.completed_at,
    )


def status_for_failure(job: GenerationJob) -> int:
    """HTTP status for a failed job.

    - validation, quota exceeded, provider validation rejection → 400
    - provider unavailable after a rate-limit response → 429
    - quota ledger or provider unavailable → 503
    - generation failure, timeout, no outputs, provider auth failure, unexpected → 500
    """
    reason = job.failure_reason
    error_kind = job.job_metadata.get("provider_error_kind")

    if reason in (FailureReason.VALIDATION_ERROR, FailureReason.QUOTA_EXCEEDED):
        return status.HTTP_400_BAD_REQUEST
    if reason is FailureReason.PROVIDER_REJECTED:
        if error_kind == ProviderErrorKind.VALIDATION_REJECTED.value:
            return status.HTTP_400_BAD_REQUEST
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    if reason is FailureReason.PROVIDER_UNAVAILABLE:
        if error_kind == ProviderErrorKind.RATE_LIMITED.value:
            return status.HTTP_429_TOO_MANY_REQUESTS
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if reason is FailureReason.QUOTA_UNAVAILABLE:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def failure_message(job: GenerationJob) -> str:
    """Message shown to API clients; provider auth and unexpected details stay internal."""
    error_kind = job.job_metadata.get("provider_error_kind")
    if job.failure_reason is FailureReason.PROVIDER_REJECTED and error_kind in (
        ProviderErrorKind.AUTHENTICATION_FAILED.value,
        ProviderErrorKind.UNEXPECTED.value,
    ):
        return "Generation provider error"
    if job.failure_reason is FailureReason.QUOTA_UNAVAILABLE:
        return "Quota service unavailable. Please try again later."
    return job.error_detail or "Generation failed"


def job_failure_error(job: GenerationJob) -> ApiError:
    reason = job.failure_reason or FailureReason.PROVIDER_REJECTED
    return ApiError(status_for_failure(job), reason.code, failure_message(job), job_id=str(job.id))


def error_body(error: ApiError) -> dict[str, Any]:
    return ErrorEnvelope(message=error.message, code=error.code, job_id=error.job_id).model_dump(
        by_alias=True, exclude_none=True
    )

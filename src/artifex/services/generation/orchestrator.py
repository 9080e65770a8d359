"""Job orchestrator: drives one generation job from request to terminal state.

Workflow:
1. Validate the request and compute its cost (create_job)
2. Reserve quota
3. Submit to the provider with bounded retries for transient failures
4. Poll until the provider reports a terminal status or the ceiling is reached
5. Persist outputs to media storage (best-effort per asset)
6. Commit or roll back the reservation, exactly once
7. Write the history record (failure is logged, never surfaced)

Every collaborator failure is translated into a FailureReason; execute() never raises.
"""

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID

import structlog

from artifex.core.config import OrchestratorPolicy, TierCapability
from artifex.models.generation_job import FailureReason, GenerationJob, JobState
from artifex.models.media_asset import MediaAsset
from artifex.services.exceptions import (
    InsufficientQuotaError,
    ProviderError,
    ProviderUnexpectedError,
    RequestValidationError,
)
from artifex.services.generation.validation import validate_request
from artifex.services.history.store import HistoryStore
from artifex.services.media import MediaStore
from artifex.services.providers.base import (
    GenerationRequest,
    NormalizedStatus,
    ProviderClient,
    ProviderStatus,
    SubmitResult,
)
from artifex.services.quota.cost import compute_cost
from artifex.services.quota.ledger import QuotaLedger

logger = structlog.get_logger()

PROMPT_PREVIEW_LENGTH = 50


@dataclass(frozen=True)
class JobSucceeded:
    job: GenerationJob


@dataclass(frozen=True)
class JobFailed:
    job: GenerationJob
    reason: FailureReason


JobOutcome = Union[JobSucceeded, JobFailed]


def prompt_preview(prompt: str) -> str:
    if len(prompt) <= PROMPT_PREVIEW_LENGTH:
        return prompt
    return prompt[:PROMPT_PREVIEW_LENGTH] + "..."


def annotate(job: GenerationJob, **values: Any) -> None:
    """Merge values into job_metadata (reassigned so the JSON column sees the change)."""
    job.job_metadata = {**job.job_metadata, **values}


class JobOrchestrator:
    """Composes provider, media store, quota ledger and history store."""

    def __init__(
        self,
        provider: ProviderClient,
        media_store: MediaStore,
        ledger: QuotaLedger,
        history: HistoryStore,
        capabilities: dict[str, TierCapability],
        policy: Optional[OrchestratorPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize orchestrator.

        Args:
            provider: Generation provider client
            media_store: Durable storage for outputs
            ledger: Quota ledger
            history: History store
            capabilities: Tier capability table (TIER_CAPABILITIES)
            policy: Retry and polling policy (defaults to production values)
            sleep: Coroutine used for every delay (tests pass a no-op)
        """
        self.provider = provider
        self.media_store = media_store
        self.ledger = ledger
        self.history = history
        self.capabilities = capabilities
        self.policy = policy or OrchestratorPolicy()
        self.sleep = sleep

    def create_job(self, owner_id: str, tier: str, request: GenerationRequest) -> GenerationJob:
        """Create a job for a request, validating it and fixing its cost.

        An invalid request yields a job that is already failed with VALIDATION_ERROR;
        execute() then only records it.
        """
        job = GenerationJob(
            owner_id=owner_id,
            tier=tier,
            kind=request.kind,
            input_prompt=request.prompt if isinstance(request.prompt, str) else "",
            input_images=[image.summary() for image in request.images],
            parameters=dict(request.parameters),
            provider_name=self.provider.name,
        )
        job.state_history = [{"state": job.state.value, "at": job.created_at.isoformat()}]

        try:
            validated = validate_request(
                request, tier, self.capabilities, self.policy.max_prompt_length
            )
        except RequestValidationError as e:
            annotate(job, invalid_field=e.field)
            self._fail(job, FailureReason.VALIDATION_ERROR, str(e))
            return job

        job.parameters = validated.parameters
        job.cost_units = compute_cost(job.kind, job.parameters, len(request.images))

        logger.info(
            "job.created",
            job_id=str(job.id),
            owner_id=owner_id,
            tier=tier,
            kind=job.kind.value,
            cost_units=job.cost_units,
            prompt_length=len(job.input_prompt),
            prompt_preview=prompt_preview(job.input_prompt),
        )
        return job

    async def execute(self, job: GenerationJob, request: GenerationRequest) -> JobOutcome:
        """Run a created job to its terminal state.

        Args:
            job: Job returned by create_job
            request: The request the job was created from (carries inline image bytes)

        Returns:
            JobSucceeded or JobFailed, never raises for collaborator failures
        """
        started = time.monotonic()

        if job.state is JobState.CREATED:
            request = replace(request, parameters=job.parameters)
            reservation_id = await self._reserve(job)
            if reservation_id is not None:
                try:
                    await self._generate(job, request)
                except Exception as e:
                    logger.error(
                        "job.generate_crashed",
                        job_id=str(job.id),
                        error_type=type(e).__name__,
                        error_message=str(e),
                    )
                    if not job.state.is_terminal:
                        self._fail_provider(
                            job,
                            FailureReason.PROVIDER_REJECTED,
                            ProviderUnexpectedError(f"Unexpected generation failure: {e}"),
                        )
                await self._resolve_quota(job, reservation_id)

        annotate(job, duration_seconds=round(time.monotonic() - started, 3))
        await self._write_history(job)

        if job.state is JobState.COMPLETED:
            logger.info(
                "job.completed",
                job_id=str(job.id),
                outputs=len(job.outputs),
                cost_units=job.cost_units,
                duration_seconds=job.job_metadata["duration_seconds"],
            )
            return JobSucceeded(job=job)
        return JobFailed(job=job, reason=job.failure_reason or FailureReason.PROVIDER_REJECTED)

    def _fail(self, job: GenerationJob, reason: FailureReason, detail: str) -> None:
        job.mark_failed(reason, detail)
        logger.warning(
            "job.failed",
            job_id=str(job.id),
            owner_id=job.owner_id,
            reason=reason.value,
            error_detail=detail,
        )

    def _fail_provider(
        self, job: GenerationJob, reason: FailureReason, error: ProviderError
    ) -> None:
        annotate(
            job, provider_error_kind=error.kind.value, provider_status_code=error.status_code
        )
        self._fail(job, reason, str(error))

    async def _reserve(self, job: GenerationJob) -> Optional[UUID]:
        try:
            reservation_id = await self.ledger.reserve(
                job.owner_id, job.tier, job.cost_units, job.id
            )
        except InsufficientQuotaError as e:
            annotate(job, quota_remaining=e.remaining)
            self._fail(job, FailureReason.QUOTA_EXCEEDED, str(e))
            return None
        except Exception as e:
            logger.error(
                "quota.reserve_failed",
                job_id=str(job.id),
                error_type=type(e).__name__,
                error_message=str(e),
            )
            self._fail(job, FailureReason.QUOTA_UNAVAILABLE, f"Quota service unavailable: {e}")
            return None

        annotate(job, reservation_id=str(reservation_id))
        job.mark_quota_reserved()
        return reservation_id

    async def _generate(self, job: GenerationJob, request: GenerationRequest) -> None:
        submitted = await self._submit(job, request)
        if submitted is None:
            return
        job.mark_submitted(submitted.task_id)
        logger.info(
            "job.submitted",
            job_id=str(job.id),
            provider=self.provider.name,
            provider_task_id=submitted.task_id,
            immediate=submitted.immediate is not None,
        )

        status = submitted.immediate or await self._poll(job, request)
        if status is None:
            return

        if status.status is ProviderStatus.FAILED:
            self._fail(job, FailureReason.PROVIDER_GENERATION_FAILED, status.error or "Unknown error")
            return

        if not status.outputs:
            self._fail(
                job,
                FailureReason.NO_OUTPUTS_PRODUCED,
                "Provider reported success without any output",
            )
            return

        job.mark_completed(await self._persist_outputs(job, status.outputs))

    async def _submit(
        self, job: GenerationJob, request: GenerationRequest
    ) -> Optional[SubmitResult]:
        """Submit with up to submit_max_attempts attempts, retrying transient failures only."""
        max_attempts = self.policy.submit_max_attempts
        attempt = 0

        while True:
            attempt += 1
            try:
                return await self.provider.submit(request)
            except ProviderError as e:
                last_error = e
            except Exception as e:
                last_error = ProviderUnexpectedError(f"Unexpected provider failure: {e}")

            if not last_error.retryable:
                self._fail_provider(job, FailureReason.PROVIDER_REJECTED, last_error)
                return None

            if attempt >= max_attempts:
                self._fail_provider(job, FailureReason.PROVIDER_UNAVAILABLE, last_error)
                return None

            delay = self.policy.submit_retry_base_delay * (2 ** (attempt - 1))
            logger.warning(
                "job.submit_retry",
                job_id=str(job.id),
                attempt=attempt,
                max_attempts=max_attempts,
                retry_in_seconds=delay,
                error_kind=last_error.kind.value,
                error_message=str(last_error),
            )
            await self.sleep(delay)

    async def _poll(
        self, job: GenerationJob, request: GenerationRequest
    ) -> Optional[NormalizedStatus]:
        """Poll until terminal; None when the job failed (timeout or rejected poll)."""
        job.mark_polling()
        ceiling = (
            self.policy.video_poll_max_attempts
            if request.kind.is_video
            else self.policy.image_poll_max_attempts
        )
        task_id = job.provider_task_id or ""

        for attempt in range(1, ceiling + 1):
            await self.sleep(self.policy.poll_interval)
            try:
                status = await self.provider.poll(task_id, request.kind)
            except ProviderError as e:
                if e.retryable:
                    logger.warning(
                        "job.poll_error",
                        job_id=str(job.id),
                        attempt=attempt,
                        error_kind=e.kind.value,
                        error_message=str(e),
                    )
                    continue
                self._fail_provider(job, FailureReason.PROVIDER_REJECTED, e)
                return None
            except Exception as e:
                self._fail_provider(
                    job,
                    FailureReason.PROVIDER_REJECTED,
                    ProviderUnexpectedError(f"Unexpected provider failure: {e}"),
                )
                return None

            logger.debug(
                "job.poll", job_id=str(job.id), attempt=attempt, status=status.status.value
            )
            if status.is_terminal:
                annotate(job, poll_attempts=attempt)
                return status

        annotate(job, poll_attempts=ceiling)
        self._fail(
            job,
            FailureReason.TIMEOUT,
            f"Generation did not finish after {ceiling} status checks",
        )
        return None

    async def _persist_outputs(self, job: GenerationJob, urls: list[str]) -> list[MediaAsset]:
        """Upload every output concurrently; failed uploads keep the provider URL."""
        resource_type = "video" if job.kind.is_video else "image"
        results = await asyncio.gather(
            *(self.media_store.persist(url, job.tier, resource_type) for url in urls),
            return_exceptions=True,
        )

        assets: list[MediaAsset] = []
        upload_failures: list[dict[str, Any]] = []
        for url, result in zip(urls, results):
            if isinstance(result, Exception):
                logger.warning(
                    "media.upload_failed",
                    job_id=str(job.id),
                    source_url=url,
                    error_type=type(result).__name__,
                    error_message=str(result),
                )
                upload_failures.append(
                    {"source_url": url, "error_type": type(result).__name__, "error": str(result)}
                )
                assets.append(MediaAsset.unpersisted(url, str(result)))
            elif isinstance(result, BaseException):
                raise result
            else:
                assets.append(result)

        if upload_failures:
            annotate(job, upload_failures=upload_failures)
        return assets

    async def _resolve_quota(self, job: GenerationJob, reservation_id: UUID) -> None:
        """Commit on completion, roll back otherwise. Called exactly once per job."""
        try:
            if job.state is JobState.COMPLETED:
                await self.ledger.commit(reservation_id)
            else:
                await self.ledger.rollback(reservation_id)
        except Exception as e:
            # The reservation stays active; startup recovery rolls it back
            logger.error(
                "quota.resolve_failed",
                job_id=str(job.id),
                reservation_id=str(reservation_id),
                state=job.state.value,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            annotate(job, quota_resolution_error=str(e))

    async def _write_history(self, job: GenerationJob) -> None:
        try:
            await self.history.record(job)
        except Exception as e:
            logger.error(
                "history.write_failed",
                job_id=str(job.id),
                error_type=type(e).__name__,
                error_message=str(e),
            )

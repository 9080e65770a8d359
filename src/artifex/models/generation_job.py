"""GenerationJob entity - one attempt to produce media from a request."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from artifex.models.media_asset import MediaAsset


class GenerationKind(str, Enum):
    """Kinds of generation the API accepts."""

    TEXT_TO_IMAGE = "text-to-image"
    IMAGE_TO_IMAGE = "image-to-image"
    MULTI_IMAGE = "multi-image"
    REFINE = "refine"
    IMAGE_TO_VIDEO = "image-to-video"

    @property
    def is_video(self) -> bool:
        return self is GenerationKind.IMAGE_TO_VIDEO

    @property
    def requires_images(self) -> bool:
        return self is not GenerationKind.TEXT_TO_IMAGE


class JobState(str, Enum):
    """Job lifecycle state."""

    CREATED = "created"
    QUOTA_RESERVED = "quota_reserved"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class FailureReason(str, Enum):
    """Why a job ended in the failed state."""

    VALIDATION_ERROR = "validation_error"
    QUOTA_EXCEEDED = "quota_exceeded"
    QUOTA_UNAVAILABLE = "quota_unavailable"
    PROVIDER_REJECTED = "provider_rejected"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROVIDER_GENERATION_FAILED = "provider_generation_failed"
    TIMEOUT = "timeout"
    NO_OUTPUTS_PRODUCED = "no_outputs_produced"

    @property
    def code(self) -> str:
        """Stable machine-readable code exposed to API clients."""
        return self.value.upper()


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks one request from creation to a terminal state.

    The orchestrator owns the instance while it runs; the history store persists it
    once, after the terminal state is reached.
    """

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(max_length=255, index=True)
    tier: str = Field(max_length=50)
    kind: GenerationKind = Field(index=True)
    input_prompt: str
    input_images: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    parameters: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    state: JobState = Field(default=JobState.CREATED, index=True)
    provider_name: Optional[str] = Field(default=None, max_length=50)
    provider_task_id: Optional[str] = Field(default=None, max_length=255)
    outputs: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    cost_units: int = Field(default=0, ge=0)
    failure_reason: Optional[FailureReason] = Field(default=None)
    error_detail: Optional[str] = Field(default=None)
    state_history: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    job_metadata: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = Field(default=None)

    @property
    def assets(self) -> list[MediaAsset]:
        return [MediaAsset.model_validate(output) for output in self.outputs]

    def _transition(self, new_state: JobState) -> None:
        now = datetime.utcnow()
        self.state = new_state
        self.updated_at = now
        self.state_history = [
            *self.state_history,
            {"state": new_state.value, "at": now.isoformat()},
        ]
        if new_state.is_terminal:
            self.completed_at = now

    def _require(self, expected: tuple[JobState, ...], target: JobState) -> None:
        if self.state not in expected:
            allowed = " or ".join(s.value for s in expected)
            raise InvalidStateTransition(
                f"Cannot move to {target.value} from {self.state.value}. "
                f"Job must be in {allowed} state."
            )

    def mark_quota_reserved(self) -> None:
        """Transition from created to quota_reserved.

        Raises:
            InvalidStateTransition: If current state is not created
        """
        self._require((JobState.CREATED,), JobState.QUOTA_RESERVED)
        self._transition(JobState.QUOTA_RESERVED)

    def mark_submitted(self, provider_task_id: str) -> None:
        """Transition from quota_reserved to submitted.

        Args:
            provider_task_id: Task identifier assigned by the provider

        Raises:
            InvalidStateTransition: If current state is not quota_reserved
            ValueError: If provider_task_id is empty
        """
        self._require((JobState.QUOTA_RESERVED,), JobState.SUBMITTED)
        if not provider_task_id:
            raise ValueError("provider_task_id is required")
        self.provider_task_id = provider_task_id
        self._transition(JobState.SUBMITTED)

    def mark_polling(self) -> None:
        """Transition from submitted to polling."""
        self._require((JobState.SUBMITTED,), JobState.POLLING)
        self._transition(JobState.POLLING)

    def mark_completed(self, assets: list[MediaAsset]) -> None:
        """Transition from submitted or polling to completed.

        Args:
            assets: Output assets, at least one

        Raises:
            InvalidStateTransition: If the provider result was not reached yet
            ValueError: If assets is empty
        """
        self._require((JobState.SUBMITTED, JobState.POLLING), JobState.COMPLETED)
        if not assets:
            raise ValueError("A completed job needs at least one output")
        self.outputs = [asset.model_dump(mode="json") for asset in assets]
        self._transition(JobState.COMPLETED)

    def mark_failed(self, reason: FailureReason, detail: str) -> None:
        """Transition from any non-terminal state to failed.

        Args:
            reason: Typed failure reason
            detail: Human-readable error detail (provider message preserved verbatim)

        Raises:
            InvalidStateTransition: If current state is already terminal
        """
        if self.state.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.state.value}."
            )
        self.failure_reason = reason
        self.error_detail = detail or reason.value
        self.outputs = []
        self._transition(JobState.FAILED)

"""Provider-neutral contract consumed by the job orchestrator."""

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import BaseModel, model_validator

from artifex.models.generation_job import GenerationKind


class ImageInput(BaseModel):
    """Input image given either as a remote URL or as inline base64 bytes."""

    url: Optional[str] = None
    data: Optional[str] = None

    @model_validator(mode="after")
    def validate_exactly_one_source(self) -> "ImageInput":
        if bool(self.url) == bool(self.data):
            raise ValueError("Image input needs exactly one of 'url' or 'data'")
        if self.url and not self.url.startswith(("http://", "https://")):
            raise ValueError("Image url must be an http(s) URL")
        if self.data:
            _ = self.content
        return self

    @property
    def is_inline(self) -> bool:
        return self.data is not None

    @property
    def mime_type(self) -> str:
        if self.data and self.data.startswith("data:") and ";" in self.data:
            return self.data[5 : self.data.index(";")]
        return "image/png"

    @property
    def content(self) -> bytes:
        """Decoded inline bytes (accepts an optional ``data:`` URI prefix)."""
        if self.data is None:
            raise ValueError("Image input is a URL, not inline data")
        raw = self.data.split(",", 1)[1] if self.data.startswith("data:") else self.data
        try:
            return base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Image data is not valid base64: {e}") from e

    def summary(self) -> dict[str, Any]:
        """Reference stored on the job record (inline bytes are not persisted)."""
        if self.url:
            return {"url": self.url}
        return {"inline_bytes": len(self.content), "mime_type": self.mime_type}


class ProviderStatus(str, Enum):
    """The three logical outcomes of a provider status check."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class NormalizedStatus:
    """Uniform job-state record every provider response is mapped onto."""

    status: ProviderStatus
    task_id: Optional[str] = None
    outputs: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not ProviderStatus.RUNNING


@dataclass(frozen=True)
class SubmitResult:
    """Accepted submission: a task id and, for synchronous providers, the final result."""

    task_id: str
    immediate: Optional[NormalizedStatus] = None


@dataclass(frozen=True)
class GenerationRequest:
    """Validated input of one generation job."""

    kind: GenerationKind
    prompt: str
    images: list[ImageInput] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)


class ProviderClient(Protocol):
    """Contract every generation provider client implements.

    Both methods raise ``ProviderError`` subclasses (see services.exceptions).
    """

    name: str

    async def submit(self, request: GenerationRequest) -> SubmitResult: ...

    async def poll(self, task_id: str, kind: GenerationKind) -> NormalizedStatus: ...

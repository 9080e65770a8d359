"""Generation job orchestration."""

from artifex.services.generation.orchestrator import (
    JobFailed,
    JobOrchestrator,
    JobOutcome,
    JobSucceeded,
)
from artifex.services.generation.runner import JobRunner
from artifex.services.generation.validation import validate_prompt, validate_request

__all__ = [
    "JobFailed",
    "JobOrchestrator",
    "JobOutcome",
    "JobRunner",
    "JobSucceeded",
    "validate_prompt",
    "validate_request",
]

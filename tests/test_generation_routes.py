"""Tests for the generation and quota API endpoints.

Tests use httpx.AsyncClient with ASGITransport against the FastAPI app, with
in-memory collaborators injected into app.state:
- Identity header verification (401)
- Wait and background (202) generation modes
- Failure envelopes and status mapping
- Job lookup ownership (404) and paginated history
"""

import asyncio
from typing import Optional
from uuid import UUID

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from artifex.api.dependencies import get_quota_ledger, get_settings
from artifex.app import app
from artifex.core.config import Settings
from artifex.models.generation_job import GenerationJob
from artifex.services.exceptions import ProviderAuthenticationError, ProviderRateLimitError
from artifex.services.generation.runner import JobRunner
from artifex.services.identity import sign_identity
from artifex.services.providers.base import NormalizedStatus, ProviderStatus

from conftest import InMemoryHistoryStore, InMemoryQuotaLedger

SECRET = "route-test-secret"

SUCCEEDED = NormalizedStatus(
    status=ProviderStatus.SUCCEEDED,
    task_id="task-1",
    outputs=["https://provider.test/out.png"],
)


def auth_headers(user_id: str = "user-1", tier: str = "free") -> dict[str, str]:
    return {
        "X-User-Id": user_id,
        "X-User-Tier": tier,
        "X-Auth-Signature": sign_identity(user_id, tier, SECRET),
    }


class InMemoryJobRepository:
    """Read side of the job repository over the in-memory history records."""

    def __init__(self, history: InMemoryHistoryStore):
        self.history = history

    async def get_by_id(self, job_id: UUID) -> Optional[GenerationJob]:
        return self.history.records.get(job_id)

    async def get_by_owner_paginated(
        self, owner_id: str, offset: int = 0, limit: int = 20
    ) -> tuple[list[GenerationJob], int]:
        jobs = sorted(
            (job for job in self.history.records.values() if job.owner_id == owner_id),
            key=lambda job: job.created_at,
            reverse=True,
        )
        return jobs[offset : offset + limit], len(jobs)


class InMemoryUnitOfWork:
    def __init__(self, history: InMemoryHistoryStore):
        self.jobs = InMemoryJobRepository(history)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, APP_ENV="test", AUTH_SIGNING_SECRET=SECRET)  # type: ignore[call-arg]


@pytest_asyncio.fixture
async def test_client(make_orchestrator, ledger, history, settings):
    """Create test client with in-memory services injected into app.state."""
    runner = JobRunner(make_orchestrator())

    async def uow_factory():
        return InMemoryUnitOfWork(history)

    app.state.runner = runner
    app.state.ledger = ledger
    app.state.uow_factory = uow_factory
    app.dependency_overrides[get_settings] = lambda: settings

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    await runner.drain()
    app.dependency_overrides.clear()


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_headers(self, test_client):
        response = await test_client.get("/api/quota")

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "message": "Missing authentication headers",
            "code": "UNAUTHORIZED",
        }

    @pytest.mark.asyncio
    async def test_bad_signature(self, test_client):
        headers = {**auth_headers(), "X-Auth-Signature": "0" * 64}

        response = await test_client.get("/api/quota", headers=headers)

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_tier_escalation_rejected(self, test_client):
        headers = {**auth_headers(tier="free"), "X-User-Tier": "pro"}

        response = await test_client.get("/api/quota", headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_tier(self, test_client):
        response = await test_client.get("/api/quota", headers=auth_headers(tier="platinum"))

        assert response.status_code == 401
        assert "platinum" in response.json()["message"]


class TestGenerate:
    @pytest.mark.asyncio
    async def test_wait_returns_completed_job(self, test_client, provider, ledger):
        provider.poll_script = [SUCCEEDED]

        response = await test_client.post(
            "/api/generate/text-to-image",
            json={"prompt": "a lighthouse at dusk"},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["state"] == "completed"
        assert data["kind"] == "text-to-image"
        assert data["costUnits"] == 1
        assert data["outputs"][0]["url"] == "https://cdn.test/free/out.png"
        assert data["outputs"][0]["persisted"] is True
        assert "error" not in data
        assert ledger.used["user-1"] == 1

    @pytest.mark.asyncio
    async def test_validation_error(self, test_client, provider, history):
        response = await test_client.post(
            "/api/generate/text-to-image",
            json={"prompt": "   "},
            headers=auth_headers(),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert body["message"] == "Prompt cannot be empty"
        assert "jobId" in body
        assert provider.submit_calls == []
        assert len(history.records) == 1

    @pytest.mark.asyncio
    async def test_missing_prompt_is_validation_error(self, test_client):
        response = await test_client.post(
            "/api/generate/text-to-image", json={}, headers=auth_headers()
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert response.json()["message"].startswith("prompt")

    @pytest.mark.asyncio
    async def test_unknown_kind_is_validation_error(self, test_client):
        response = await test_client.post(
            "/api/generate/text-to-music", json={"prompt": "x"}, headers=auth_headers()
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_kind_not_available_on_tier(self, test_client):
        response = await test_client.post(
            "/api/generate/refine",
            json={"prompt": "sharper", "images": [{"url": "https://x.test/in.png"}]},
            headers=auth_headers(tier="free"),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, test_client, ledger, provider):
        ledger.limits["free"] = 0

        response = await test_client.post(
            "/api/generate/text-to-image", json={"prompt": "x"}, headers=auth_headers()
        )

        assert response.status_code == 400
        assert response.json()["code"] == "QUOTA_EXCEEDED"
        assert provider.submit_calls == []

    @pytest.mark.asyncio
    async def test_provider_generation_failure_is_500(self, test_client, provider):
        provider.poll_script = [
            NormalizedStatus(
                status=ProviderStatus.FAILED, task_id="task-1", error="safety violation"
            )
        ]

        response = await test_client.post(
            "/api/generate/text-to-image", json={"prompt": "x"}, headers=auth_headers()
        )

        assert response.status_code == 500
        assert response.json()["code"] == "PROVIDER_GENERATION_FAILED"
        assert response.json()["message"] == "safety violation"

    @pytest.mark.asyncio
    async def test_rate_limited_provider_is_429(self, test_client, provider):
        provider.submit_script = [ProviderRateLimitError("slow down", status_code=429)]

        response = await test_client.post(
            "/api/generate/text-to-image", json={"prompt": "x"}, headers=auth_headers()
        )

        assert response.status_code == 429
        assert response.json()["code"] == "PROVIDER_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_provider_auth_failure_hides_detail(self, test_client, provider):
        provider.submit_script = [ProviderAuthenticationError("bad key fp-123", status_code=401)]

        response = await test_client.post(
            "/api/generate/text-to-image", json={"prompt": "x"}, headers=auth_headers()
        )

        assert response.status_code == 500
        assert response.json()["code"] == "PROVIDER_REJECTED"
        assert response.json()["message"] == "Generation provider error"

    @pytest.mark.asyncio
    async def test_timeout_is_500(self, test_client):
        response = await test_client.post(
            "/api/generate/text-to-image", json={"prompt": "x"}, headers=auth_headers()
        )

        assert response.status_code == 500
        assert response.json()["code"] == "TIMEOUT"


class TestBackgroundJobs:
    @pytest.mark.asyncio
    async def test_accepted_job_can_be_polled_until_done(self, test_client, provider):
        gate = asyncio.Event()
        original_poll = provider.poll

        async def gated_poll(task_id, kind):
            await gate.wait()
            return await original_poll(task_id, kind)

        provider.poll = gated_poll
        provider.poll_script = [SUCCEEDED]

        response = await test_client.post(
            "/api/generate/text-to-image?wait=false",
            json={"prompt": "a paper boat"},
            headers=auth_headers(),
        )

        assert response.status_code == 202
        job_id = response.json()["data"]["jobId"]
        assert response.json()["data"]["state"] == "created"

        await asyncio.sleep(0.01)
        in_flight = await test_client.get(f"/api/jobs/{job_id}", headers=auth_headers())
        assert in_flight.status_code == 200
        assert in_flight.json()["data"]["state"] == "polling"

        gate.set()
        await app.state.runner.drain()

        finished = await test_client.get(f"/api/jobs/{job_id}", headers=auth_headers())
        assert finished.status_code == 200
        assert finished.json()["data"]["state"] == "completed"
        assert finished.json()["data"]["outputs"][0]["persisted"] is True

    @pytest.mark.asyncio
    async def test_other_owner_gets_404(self, test_client, provider):
        provider.poll_script = [SUCCEEDED]
        created = await test_client.post(
            "/api/generate/text-to-image", json={"prompt": "mine"}, headers=auth_headers()
        )
        job_id = created.json()["data"]["jobId"]

        response = await test_client.get(
            f"/api/jobs/{job_id}", headers=auth_headers(user_id="user-2")
        )

        assert response.status_code == 404
        assert response.json()["code"] == "JOB_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_job_is_404(self, test_client):
        response = await test_client.get(
            "/api/jobs/00000000-0000-0000-0000-000000000000", headers=auth_headers()
        )

        assert response.status_code == 404


class TestHistoryAndQuota:
    @pytest.mark.asyncio
    async def test_generations_are_paginated_newest_first(self, test_client, provider):
        provider.poll_script = [SUCCEEDED]
        for prompt in ("first", "second", "third"):
            await test_client.post(
                "/api/generate/text-to-image", json={"prompt": prompt}, headers=auth_headers()
            )
        await test_client.post(
            "/api/generate/text-to-image", json={"prompt": "theirs"},
            headers=auth_headers("user-2"),
        )

        response = await test_client.get(
            "/api/generations?offset=0&limit=2", headers=auth_headers()
        )

        assert response.status_code == 200
        page = response.json()["data"]
        assert page["total"] == 3
        assert page["offset"] == 0
        assert page["limit"] == 2
        assert len(page["jobs"]) == 2

    @pytest.mark.asyncio
    async def test_limit_out_of_range(self, test_client):
        response = await test_client.get("/api/generations?limit=500", headers=auth_headers())

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_quota_snapshot(self, test_client, provider):
        provider.poll_script = [SUCCEEDED]
        await test_client.post(
            "/api/generate/text-to-image", json={"prompt": "x"}, headers=auth_headers()
        )

        response = await test_client.get("/api/quota", headers=auth_headers())

        assert response.status_code == 200
        assert response.json()["data"] == {
            "tier": "free",
            "monthlyLimit": 10,
            "used": 1,
            "reserved": 0,
            "remaining": 9,
        }

    @pytest.mark.asyncio
    async def test_unhandled_error_renders_internal_error(self, test_client):
        class BrokenLedger(InMemoryQuotaLedger):
            async def snapshot(self, owner_id, tier):
                raise RuntimeError("ledger exploded")

        app.dependency_overrides[get_quota_ledger] = lambda: BrokenLedger()

        response = await test_client.get("/api/quota", headers=auth_headers())

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
        }


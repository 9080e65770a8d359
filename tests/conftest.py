"""pytest fixtures for the Artifex backend tests.

Provides:
- postgres_container: Session-scoped testcontainer PostgreSQL instance (migrations applied)
- utc_timezone: Autouse fixture enforcing UTC timezone
- session: Function-scoped database session with table cleanup
- uow_factory: Function-scoped UnitOfWork factory
- In-memory fakes for the orchestrator collaborators (provider, media store,
  quota ledger, history store) and an orchestrator factory with zero-delay sleep
"""

import asyncio
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, AsyncGenerator, Optional, Union
from uuid import UUID, uuid4

# Settings validation is skipped in test environments
os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from artifex.core.config import OrchestratorPolicy, default_tier_capabilities  # noqa: E402
from artifex.core.database import setup_db_session  # noqa: E402
from artifex.models.generation_job import GenerationJob, GenerationKind  # noqa: E402
from artifex.models.media_asset import MediaAsset  # noqa: E402
from artifex.services.exceptions import (  # noqa: E402
    HistoryStoreError,
    InsufficientQuotaError,
    MediaNetworkError,
    QuotaLedgerError,
)
from artifex.services.generation.orchestrator import JobOrchestrator  # noqa: E402
from artifex.services.providers.base import (  # noqa: E402
    GenerationRequest,
    NormalizedStatus,
    ProviderStatus,
    SubmitResult,
)
from artifex.services.quota.ledger import QuotaSnapshot  # noqa: E402
from artifex.uow import create_uow_factory  # noqa: E402

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def start_postgres_container():
    """Start the PostgreSQL test container, skipping when Docker is unreachable."""
    from testcontainers.postgres import PostgresContainer

    try:
        container = PostgresContainer(
            image="postgres:17",
            username="test",
            password="test",
            dbname="test_artifex",
        )
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available for PostgreSQL tests: {e}")
    return container


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Container starts once per test session and is reused across all tests.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    Tests depending on it are skipped when no Docker daemon is reachable.
    """
    container = start_postgres_container()

    try:
        db_url = container.get_connection_url(driver="psycopg")

        # Set DATABASE_URL environment variable for alembic env.py
        env = os.environ.copy()
        env["DATABASE_URL"] = db_url

        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session(postgres_container) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session with table cleanup.

    Each test gets a fresh session with empty tables (deleted between tests).
    """
    db_url = postgres_container.get_connection_url(driver="psycopg")
    session_factory = setup_db_session(db_url, pool_size=5)

    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes from the test
        await session.rollback()

        # Order matters: delete from dependent tables first
        await session.execute(text("DELETE FROM quota_reservations"))
        await session.execute(text("DELETE FROM usage_accounts"))
        await session.execute(text("DELETE FROM generation_jobs"))
        await session.commit()

    await session.bind.dispose()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session: AsyncSession):
    """Provide function-scoped UnitOfWork factory bound to the test engine."""
    session_factory = async_sessionmaker(bind=session.bind, expire_on_commit=False)
    return create_uow_factory(session_factory)


# In-memory collaborators


class FakeProvider:
    """Scripted provider client.

    ``submit_script`` and ``poll_script`` are consumed in order; each item is either a
    result or an exception to raise. The last poll item repeats once the script runs out.
    """

    name = "fake"

    def __init__(
        self,
        submit_script: Optional[list[Any]] = None,
        poll_script: Optional[list[Any]] = None,
    ):
        self.submit_script = list(submit_script or [SubmitResult(task_id="task-1")])
        self.poll_script = list(
            poll_script or [NormalizedStatus(status=ProviderStatus.RUNNING, task_id="task-1")]
        )
        self.submit_calls: list[GenerationRequest] = []
        self.poll_calls: list[str] = []

    async def submit(self, request: GenerationRequest) -> SubmitResult:
        self.submit_calls.append(request)
        item = self.submit_script.pop(0) if len(self.submit_script) > 1 else self.submit_script[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def poll(self, task_id: str, kind: GenerationKind) -> NormalizedStatus:
        self.poll_calls.append(task_id)
        item = self.poll_script.pop(0) if len(self.poll_script) > 1 else self.poll_script[0]
        if isinstance(item, BaseException):
            raise item
        return item


class FakeMediaStore:
    """Media store returning a durable URL per source; listed sources fail."""

    def __init__(self, failing: Optional[set[str]] = None, fail_all: bool = False):
        self.failing = failing or set()
        self.fail_all = fail_all
        self.calls: list[tuple[Union[bytes, str], str, str]] = []

    async def persist(
        self, source: Union[bytes, str], folder_hint: str, resource_type: str = "image"
    ) -> MediaAsset:
        self.calls.append((source, folder_hint, resource_type))
        if self.fail_all or source in self.failing:
            raise MediaNetworkError(f"Upload failed for {source}")
        name = str(source).rsplit("/", 1)[-1]
        return MediaAsset(
            source_url=str(source),
            durable_url=f"https://cdn.test/{folder_hint}/{name}",
            width=1024,
            height=1024,
            format="png",
            byte_size=2048,
            thumbnail_url=f"https://cdn.test/thumb/{name}",
            public_id=f"{folder_hint}/{name}",
            persisted=True,
        )


class InMemoryQuotaLedger:
    """Quota ledger keeping counters in dicts, serialized by one lock."""

    def __init__(self, limits: Optional[dict[str, int]] = None, unavailable: bool = False):
        self.limits = limits if limits is not None else {"free": 10, "plus": 100, "pro": 500}
        self.unavailable = unavailable
        self.used: dict[str, int] = {}
        self.reserved: dict[str, int] = {}
        self.reservations: dict[UUID, dict[str, Any]] = {}
        self.commit_calls: list[UUID] = []
        self.rollback_calls: list[UUID] = []
        self._lock = asyncio.Lock()

    async def reserve(self, owner_id: str, tier: str, units: int, job_id: UUID) -> UUID:
        if self.unavailable:
            raise QuotaLedgerError("ledger down")
        async with self._lock:
            used = self.used.get(owner_id, 0)
            reserved = self.reserved.get(owner_id, 0)
            remaining = self.limits.get(tier, 0) - used - reserved
            if units > remaining:
                raise InsufficientQuotaError(owner_id, needed=units, remaining=max(remaining, 0))
            reservation_id = uuid4()
            self.reserved[owner_id] = reserved + units
            self.reservations[reservation_id] = {
                "owner_id": owner_id,
                "units": units,
                "job_id": job_id,
                "status": "active",
            }
            return reservation_id

    async def _resolve(self, reservation_id: UUID, status: str) -> None:
        async with self._lock:
            reservation = self.reservations[reservation_id]
            if reservation["status"] != "active":
                return
            reservation["status"] = status
            owner_id, units = reservation["owner_id"], reservation["units"]
            self.reserved[owner_id] -= units
            if status == "committed":
                self.used[owner_id] = self.used.get(owner_id, 0) + units

    async def commit(self, reservation_id: UUID) -> None:
        self.commit_calls.append(reservation_id)
        await self._resolve(reservation_id, "committed")

    async def rollback(self, reservation_id: UUID) -> None:
        self.rollback_calls.append(reservation_id)
        await self._resolve(reservation_id, "rolled_back")

    async def snapshot(self, owner_id: str, tier: str) -> QuotaSnapshot:
        return QuotaSnapshot(
            owner_id=owner_id,
            tier=tier,
            monthly_limit=self.limits.get(tier, 0),
            used_units=self.used.get(owner_id, 0),
            reserved_units=self.reserved.get(owner_id, 0),
        )


class InMemoryHistoryStore:
    """History store keeping records in a dict keyed by job id."""

    def __init__(self, failing: bool = False):
        self.failing = failing
        self.records: dict[UUID, GenerationJob] = {}
        self.calls = 0

    async def record(self, job: GenerationJob) -> None:
        self.calls += 1
        if self.failing:
            raise HistoryStoreError("history database unavailable")
        if job.id in self.records:
            raise HistoryStoreError(f"Job {job.id} already recorded")
        self.records[job.id] = GenerationJob.model_validate(job.model_dump())


async def no_sleep(seconds: float) -> None:
    return None


TEST_POLICY = OrchestratorPolicy(
    max_prompt_length=2000,
    submit_max_attempts=3,
    submit_retry_base_delay=0.0,
    poll_interval=0.0,
    image_poll_max_attempts=3,
    video_poll_max_attempts=5,
)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def media_store() -> FakeMediaStore:
    return FakeMediaStore()


@pytest.fixture
def ledger() -> InMemoryQuotaLedger:
    return InMemoryQuotaLedger()


@pytest.fixture
def history() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def make_orchestrator(provider, media_store, ledger, history):
    """Build an orchestrator over the fakes; keyword arguments replace any of them."""

    def _make(**overrides: Any) -> JobOrchestrator:
        options: dict[str, Any] = {
            "provider": provider,
            "media_store": media_store,
            "ledger": ledger,
            "history": history,
            "capabilities": default_tier_capabilities(),
            "policy": TEST_POLICY,
            "sleep": no_sleep,
        }
        options.update(overrides)
        return JobOrchestrator(**options)

    return _make

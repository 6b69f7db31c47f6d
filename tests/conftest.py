from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from imagegate.core.config import Settings, settings

# Override settings for tests
settings.app_env = "development"
settings.replicate_api_token = "test-token"

from imagegate.core.rate_limit import limiter  # noqa: E402
from imagegate.db.base import Base  # noqa: E402
from imagegate.gateway.admission import AdmissionController, AdmissionLimits  # noqa: E402
from imagegate.gateway.counter_store import UsageBatch  # noqa: E402
from imagegate.gateway.model_registry import ModelRegistry  # noqa: E402
from imagegate.gateway.provider import BaseInferenceProvider  # noqa: E402
from imagegate.gateway.types import InferenceRequest, InferenceResult, ModelDescriptor  # noqa: E402
from imagegate.main import app  # noqa: E402
from imagegate.services.credit_ledger import CreditLedger  # noqa: E402
from imagegate.services.credit_store import SqlCreditStore  # noqa: E402
from imagegate.services.orchestrator import RequestOrchestrator  # noqa: E402



# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeCounterStore:
    """In-memory CounterStore with expiry driven by a FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.counters: dict[str, tuple[int, datetime]] = {}
        self.sets: dict[str, tuple[set[str], datetime]] = {}
        self.applied: list[UsageBatch] = []
        self.fail_apply = False

    def _alive(self, expires_at: datetime) -> bool:
        return self.clock() < expires_at

    async def get_count(self, key: str) -> int:
        entry = self.counters.get(key)
        if entry is None or not self._alive(entry[1]):
            return 0
        return entry[0]

    async def get_members(self, key: str) -> set[str]:
        entry = self.sets.get(key)
        if entry is None or not self._alive(entry[1]):
            return set()
        return set(entry[0])

    async def apply(self, batch: UsageBatch) -> dict[str, int]:
        if self.fail_apply:
            raise ConnectionError("counter store unavailable")
        self.applied.append(batch)
        values: dict[str, int] = {}
        for op in batch.increments:
            value = await self.get_count(op.key) + op.amount
            self.counters[op.key] = (value, self.clock() + timedelta(seconds=op.ttl_seconds))
            values[op.key] = value
        for op in batch.set_adds:
            members = await self.get_members(op.key)
            members.add(op.member)
            self.sets[op.key] = (members, self.clock() + timedelta(seconds=op.ttl_seconds))
        return values

    async def ping(self) -> bool:
        return True


class FakeProvider(BaseInferenceProvider):
    """Replays scripted outcomes; an Exception entry is raised, anything else returned."""

    name = "fake"

    def __init__(self, outcomes: list | None = None):
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[InferenceRequest, ModelDescriptor]] = []

    async def predict(self, request: InferenceRequest, model: ModelDescriptor) -> InferenceResult:
        self.calls.append((request, model))
        outcome = self.outcomes.pop(0) if self.outcomes else make_result()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def make_result(url: str = "https://replicate.delivery/out/abc.png") -> InferenceResult:
    return InferenceResult(
        output_ref=url,
        mime_type="image/png",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        model_version="test",
        latency_ms=5,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(retry_base_delay_ms=0, refund_base_delay_ms=0, ip_hash_salt="test-salt")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def counter_store(clock: FakeClock) -> FakeCounterStore:
    return FakeCounterStore(clock)


@pytest.fixture
def admission(counter_store: FakeCounterStore, clock: FakeClock) -> AdmissionController:
    return AdmissionController(counter_store, AdmissionLimits(), clock=clock)


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def credit_store(session_factory) -> SqlCreditStore:
    return SqlCreditStore(session_factory)


@pytest.fixture
def ledger(credit_store: SqlCreditStore) -> CreditLedger:
    return CreditLedger(credit_store)


@pytest.fixture
def registry() -> ModelRegistry:
    return ModelRegistry()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def orchestrator(admission, ledger, registry, provider, test_settings) -> RequestOrchestrator:
    return RequestOrchestrator(admission, ledger, registry, provider, test_settings)


@pytest.fixture
async def client(orchestrator, admission, ledger, registry) -> AsyncGenerator[AsyncClient, None]:
    app.state.admission = admission
    app.state.ledger = ledger
    app.state.registry = registry
    app.state.orchestrator = orchestrator
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

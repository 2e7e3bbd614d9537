"""
Shared fixtures: in-memory database, stores, simulated gateway and dispatcher
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

from leaddialer.core.config import Settings
from leaddialer.domain.models.agent import AgentCreate
from leaddialer.domain.models.lead import LeadCreate, LeadPriority
from leaddialer.infrastructure.events.publisher import CallEventPublisher
from leaddialer.infrastructure.storage.agent_directory import AgentDirectory
from leaddialer.infrastructure.storage.call_attempt_store import CallAttemptStore
from leaddialer.infrastructure.storage.database import Database
from leaddialer.infrastructure.storage.lead_store import LeadStore
from leaddialer.infrastructure.telephony.simulated_gateway import SimulatedGateway
from leaddialer.workers.dialer_worker import Dispatcher


# Fixed clock origin for deterministic scheduling tests
T0 = datetime(2025, 1, 6, 15, 0, 0)


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite://",
        redis_url="",
        api_base_url="http://dialer.test",
        caller_id="+15550000000",
        telephony_provider="simulated",
        concurrency_limit=5,
        tick_interval_seconds=0.01,
        recovery_interval_seconds=0,
        stuck_threshold_seconds=300,
        max_call_duration_seconds=3600,
        ring_timeout_seconds=30,
        max_attempts=3,
        no_answer_delay_minutes=30,
        busy_delay_minutes=15,
        failed_delay_minutes=30,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_tables()
    yield db
    db.dispose()


@pytest.fixture
def lead_store(database):
    return LeadStore(database)


@pytest.fixture
def attempt_store(database):
    return CallAttemptStore(database)


@pytest.fixture
def agent_directory(database):
    return AgentDirectory(database)


@pytest.fixture
def gateway():
    return SimulatedGateway()


@pytest.fixture
def publisher():
    mock = MagicMock(spec=CallEventPublisher)
    mock.initialize = AsyncMock()
    mock.publish = AsyncMock(return_value=True)
    mock.close = AsyncMock()
    mock.get_stats.return_value = {"published": 0, "dropped": 0}
    return mock


@pytest.fixture
def make_lead(lead_store):
    """Create a lead; ``offset`` seconds after T0 sets its creation time."""
    counter = {"n": 0}

    def _make(priority=LeadPriority.MEDIUM, phone=None, offset=0, **fields):
        counter["n"] += 1
        data = LeadCreate(
            phone=phone or f"+1555010{counter['n']:04d}",
            priority=priority,
            **fields,
        )
        return lead_store.create(data, now=T0 + timedelta(seconds=offset))

    return _make


@pytest.fixture
def make_agent(agent_directory):
    counter = {"n": 0}

    def _make(available=True, name=None):
        counter["n"] += 1
        return agent_directory.create(AgentCreate(
            name=name or f"Agent {counter['n']}",
            phone=f"+1555020{counter['n']:04d}",
            available=available,
        ))

    return _make


@pytest.fixture
def make_dispatcher(lead_store, attempt_store, agent_directory, gateway, publisher):
    def _make(**overrides):
        dispatcher = Dispatcher(
            lead_store=lead_store,
            attempt_store=attempt_store,
            agent_directory=agent_directory,
            gateway=gateway,
            settings=make_settings(**overrides),
            publisher=publisher,
        )
        dispatcher.resume()
        return dispatcher

    return _make


@pytest.fixture
def dispatcher(make_dispatcher):
    return make_dispatcher()


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def settings_factory():
    return make_settings

"""Pytest configuration and fixtures."""
import os
from datetime import datetime, timedelta
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

# Set test environment BEFORE importing app to avoid touching a real database
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "False"
os.environ["TELEMETRY_PROVIDER"] = "mock"

from wa_governor.main import app
from wa_governor.api.deps import get_governor
from wa_governor.db.base import Base, create_db_engine
from wa_governor.db.models.connection import WhatsappConnection, ConnectionStatus
from wa_governor.db.models.health_score import HealthScore
from wa_governor.db.models.warmup import NumberWarmup, WarmupState
from wa_governor.services.adapters.telemetry.mock import MockTelemetrySource
from wa_governor.services.governor import Governor, Actor
from wa_governor.services.governor.config import GovernorConfig
from wa_governor.services.governor.locks import ConnectionLockRegistry
from wa_governor.services.governor.scoring import status_for_score
from wa_governor.services.governor.state_machine import limits_for

# Use in-memory SQLite for testing
engine = create_db_engine("sqlite:///:memory:")
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

START = datetime(2025, 6, 2, 12, 0, 0)


class FakeClock:
    """Controllable replacement for datetime.utcnow."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    return TestingSessionLocal


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def telemetry():
    return MockTelemetrySource()


@pytest.fixture
def governor(db_session, telemetry, clock):
    """Governor bound to the test database with a single worker."""
    gov = Governor(
        session_factory=TestingSessionLocal,
        telemetry=telemetry,
        config=GovernorConfig(),
        locks=ConnectionLockRegistry(timeout=0.1),
        clock=clock,
        max_workers=1,
        telemetry_timeout=2.0,
    )
    yield gov
    gov.shutdown()


@pytest.fixture(scope="function")
def client(governor):
    """Create a test client with the governor override."""
    app.dependency_overrides[get_governor] = lambda: governor
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_connection(db_session, clock):
    """Factory for connections, optionally with a warmup row in a given state."""
    counter = {"n": 0}

    def _make(age_days=30, state=None, plan_daily_limit=None, status=ConnectionStatus.ACTIVE,
              cooldown_until=None, **fields):
        counter["n"] += 1
        connection = WhatsappConnection(
            tenant_id=1,
            phone_number=f"+1555000{counter['n']:04d}",
            status=status,
            activated_at=clock.now - timedelta(days=age_days, hours=1),
            plan_daily_limit=plan_daily_limit,
            **fields,
        )
        db_session.add(connection)
        db_session.commit()
        db_session.refresh(connection)

        if state is not None:
            daily, hourly = limits_for(state, age_days, GovernorConfig().warmup, plan_daily_limit)
            warmup = NumberWarmup(
                connection_id=connection.id,
                state=state,
                state_changed_at=clock.now - timedelta(days=1),
                number_age_days=age_days,
                current_daily_limit=daily,
                current_hourly_limit=hourly,
                cooldown_until=cooldown_until,
            )
            db_session.add(warmup)
            connection.warmup_state = state.value
            connection.warmup_daily_limit = daily
            db_session.commit()
        return connection.id

    return _make


@pytest.fixture
def make_health(db_session, clock):
    """Insert a cached health score for a connection."""

    def _make(connection_id, score):
        health = HealthScore(
            connection_id=connection_id,
            score=score,
            status=status_for_score(score, GovernorConfig().scoring).value,
            calculated_at=clock.now,
        )
        db_session.add(health)
        db_session.commit()
        return health

    return _make


@pytest.fixture
def owner():
    return Actor(id="owner-42", role="owner")


@pytest.fixture
def actor_headers():
    return {"X-Actor-Id": "owner-42", "X-Actor-Role": "owner"}

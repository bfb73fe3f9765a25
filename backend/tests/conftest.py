"""Shared pytest fixtures for the CRM Workflow Engine test suite.

Provides:
- A fresh file-backed async SQLite database per test (no PostgreSQL needed)
- Session factory and SQL entity store
- A frozen clock so delays can be simulated without waiting
- A workflow engine wired to all of the above
- FastAPI test client (httpx.AsyncClient) using the same engine
- Helpers to create templates, automations and CRM records
"""

import os
from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("POLLER_ENABLED", "false")
os.environ.setdefault("EVENT_BUS_ENABLED", "false")
os.environ.setdefault("LOCK_BACKEND", "memory")

from actions.registry import ActionRegistry  # noqa: E402
from core.clock import FrozenClock  # noqa: E402
from db.base import Base  # noqa: E402
from db.database import create_db_engine, create_session_factory  # noqa: E402
from notifications.channels import (  # noqa: E402
    BaseChannel,
    DeliveryResult,
    Notification,
    NotificationChannel,
)
from notifications.manager import NotificationManager  # noqa: E402
from services.entity_store import SQLEntityStore  # noqa: E402
from workflow.engine import build_workflow_engine  # noqa: E402
from workflow.locks import LocalLockManager  # noqa: E402

START = datetime(2025, 3, 1, 9, 0, 0)


class RecordingEmailChannel(BaseChannel):
    """Email channel that keeps sent messages in memory."""

    channel_type = NotificationChannel.EMAIL

    def __init__(self):
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> DeliveryResult:
        self.sent.append(notification)
        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=notification.recipient,
            message="recorded",
        )


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A fresh SQLite database file for each test."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'workflows.db'}")
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory):
    return SQLEntityStore(session_factory)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def registry():
    return ActionRegistry()


@pytest.fixture
def email_channel():
    return RecordingEmailChannel()


@pytest.fixture
def notifications(email_channel):
    manager = NotificationManager()
    manager.register_channel(email_channel)
    return manager


@pytest.fixture
def locks():
    return LocalLockManager()


@pytest.fixture
def engine(session_factory, registry, store, locks, clock, notifications):
    from app.config import get_settings

    return build_workflow_engine(
        session_factory,
        settings=get_settings(),
        registry=registry,
        store=store,
        locks=locks,
        clock=clock,
        notifications=notifications,
    )


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def app(session_factory, engine):
    """FastAPI app whose DB session and engine point at the test database."""
    from app.dependencies import get_db, get_engine
    from app.main import create_app

    test_app = create_app()

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app.dependency_overrides[get_db] = _test_db
    test_app.dependency_overrides[get_engine] = lambda: engine
    return test_app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Test data fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def make_template(session_factory):
    """Create a template and return its id."""
    from services.workflow_service import TemplateService

    async def _make(actions, is_active=True, name="Test template"):
        async with session_factory() as session:
            template = await TemplateService(session).create_template(
                name=name, actions=actions, is_active=is_active
            )
            await session.commit()
            return template.id

    return _make


@pytest.fixture
def make_automation(session_factory):
    """Create an automation and return its id."""
    from services.workflow_service import AutomationService

    async def _make(actions, trigger_conditions=None, is_active=True, trigger_type="manual"):
        async with session_factory() as session:
            automation = await AutomationService(session).create_automation(
                name="Test automation",
                trigger_type=trigger_type,
                actions=actions,
                trigger_conditions=trigger_conditions,
                is_active=is_active,
            )
            await session.commit()
            return automation.id

    return _make


@pytest_asyncio.fixture
async def student(store):
    """An at-risk student with a counselor."""
    return await store.create("student_profile", {
        "id": "student-1",
        "first_name": "Ana",
        "last_name": "Petrova",
        "email": "ana@example.com",
        "status": "at_risk",
        "lead_score": 50,
        "counselor_id": "counselor-1",
    })


@pytest.fixture
def load_execution(session_factory):
    """Reload an execution and its log from the database."""
    from services.workflow_service import ExecutionService

    async def _load(execution_id):
        async with session_factory() as session:
            svc = ExecutionService(session)
            execution = await svc.get_by_id(execution_id)
            log = await svc.load_log(execution_id)
            return execution, log

    return _load

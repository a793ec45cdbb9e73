import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import timedelta
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chatbridge.config import RoutingConfig, Settings, get_settings
from chatbridge.database import Base, get_db
from chatbridge.dependencies import get_automation_client, get_human_notifier, get_rate_limiter, get_routing_config
from chatbridge.models import ChatMessage  # noqa: F401
from chatbridge.services.rate_limiter import InMemoryCounterStore, RateLimiter
from chatbridge.services.result import Result
from chatbridge.services.session_service import VisitorContext

OPERATOR_CHAT_ID = "-100123456"


@pytest.fixture
def engine():
    """In-memory SQLite shared across threads."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def routing_config():
    return RoutingConfig(
        site_name="Test Site",
        site_url="https://example.com",
        automation_enabled=False,
        automation_url=None,
        automation_api_key=None,
        automation_keywords=(),
        automation_timeout=timedelta(seconds=10),
        human_chat_id=OPERATOR_CHAT_ID,
        human_timeout=timedelta(seconds=30),
    )


@pytest.fixture
def automation_config(routing_config):
    return RoutingConfig(
        site_name=routing_config.site_name,
        site_url=routing_config.site_url,
        automation_enabled=True,
        automation_url="https://automation.example.com/webhook/chat",
        automation_api_key="secret-key",
        automation_keywords=("hosting", "domain"),
        automation_timeout=timedelta(seconds=10),
        human_chat_id=OPERATOR_CHAT_ID,
        human_timeout=timedelta(seconds=30),
    )


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        chat_token_secret="test-secret",
        admin_token="admin-secret",
        telegram_chat_id=OPERATOR_CHAT_ID,
        site_name="Test Site",
        site_url="https://example.com",
    )


@pytest.fixture
def visitor():
    return VisitorContext(
        session_id="chat_juan_a1b2c3",
        declared_name="Juan",
        ip_address="203.0.113.7",
        user_agent="pytest-agent",
        page="https://example.com/pricing",
    )


@pytest.fixture
def limiter():
    return RateLimiter(InMemoryCounterStore())


@pytest.fixture
def notifier():
    notifier = Mock()
    notifier.notify.return_value = Result.success(555)
    notifier.send_test_message.return_value = Result.success(556)
    return notifier


@pytest.fixture
def automation():
    client = Mock()
    client.request_answer.return_value = Result.failure("Automation not configured", "channel_error")
    return client


@pytest.fixture
def client(session_factory, test_settings, routing_config, limiter, notifier, automation):
    from chatbridge.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_routing_config] = lambda: routing_config
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_human_notifier] = lambda: notifier
    app.dependency_overrides[get_automation_client] = lambda: automation
    yield TestClient(app)
    app.dependency_overrides.clear()

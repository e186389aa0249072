"""
Pytest fixtures for the split kernel test suite.

Provides:
- A session-scoped engine and schema, per-test sessions rolled back at
  teardown
- Deterministic clock, services and plan catalog
- Builders for valid split configurations

Environment Variables:
- DATABASE_URL: database to test against.  Defaults to in-memory SQLite;
  tests marked ``postgres`` are skipped unless it points at PostgreSQL.
"""

import json
import logging
import os
from collections.abc import Callable, Generator
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from split_config.loader import load_billing_settings
from split_kernel.db.base import Base
from split_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from split_kernel.domain.clock import DeterministicClock
from split_kernel.domain.dtos import (
    ReceiverInput,
    ScopeKey,
    SplitConfigurationInfo,
    SplitScope,
)
from split_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from split_kernel.services.billing_cycle_service import BillingCycleService
from split_kernel.services.collaborators import StaticPlanResolver
from split_kernel.services.configuration_service import SplitConfigurationService
from tests.builders import platform_agency_receivers

DEFAULT_DATABASE_URL = "sqlite://"

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")


def pytest_collection_modifyitems(config, items):
    if get_database_url().startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="needs DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture split_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, config_service):
            config_service.activate(...)
            logs = captured_logs()
            assert any(r["message"] == "configuration_activated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("split_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Session-scoped DB infrastructure
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    eng = init_engine_from_url(get_database_url(), echo=False)
    drop_tables()
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture(scope="function")
def session(db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection; any
    ``session.commit()`` only releases a savepoint, and the outer
    transaction is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


def _truncate_all_tables(engine) -> None:
    table_names = [t.name for t in reversed(Base.metadata.sorted_tables)]
    with engine.connect() as conn:
        conn.execute(text("TRUNCATE " + ", ".join(table_names) + " CASCADE"))
        conn.commit()


@pytest.fixture(scope="function")
def pg_session_factory(db_engine):
    """Session factory with real commits; tables are truncated at teardown."""
    factory = get_session_factory()
    created: list[Session] = []

    def tracked_factory() -> Session:
        s = factory()
        created.append(s)
        return s

    yield tracked_factory

    for s in created:
        if s.is_active:
            s.rollback()
        s.close()
    _truncate_all_tables(db_engine)


# =============================================================================
# Actors, clock and services
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """2024-01-15 12:00 UTC, so the current billing month is 2024-01."""
    return DeterministicClock()


@pytest.fixture
def config_service(session, deterministic_clock) -> SplitConfigurationService:
    return SplitConfigurationService(session, deterministic_clock)


@pytest.fixture(scope="session")
def billing_settings():
    return load_billing_settings()


@pytest.fixture
def billing_service(session, deterministic_clock, billing_settings) -> BillingCycleService:
    return BillingCycleService(
        session,
        billing_settings,
        clock=deterministic_clock,
        plan_resolver=StaticPlanResolver(default=billing_settings.default_plan),
    )


# =============================================================================
# Configuration builders
# =============================================================================


@pytest.fixture
def make_configuration(config_service, test_actor_id) -> Callable[..., SplitConfigurationInfo]:
    """Create a DRAFT configuration; platform 10% / agency 90% by default."""

    def _make(
        name: str = "Standard split",
        scope: SplitScope = SplitScope.GLOBAL,
        scope_key: ScopeKey | None = None,
        receivers: tuple[ReceiverInput, ...] | None = None,
    ) -> SplitConfigurationInfo:
        return config_service.create_configuration(
            name=name,
            actor_id=test_actor_id,
            scope=scope,
            scope_key=scope_key,
            receivers=receivers if receivers is not None else platform_agency_receivers(),
        )

    return _make


@pytest.fixture
def make_active_configuration(make_configuration, config_service, test_actor_id):
    """Create, validate and activate a configuration."""

    def _make(**kwargs) -> SplitConfigurationInfo:
        info = make_configuration(**kwargs)
        config_service.validate(info.id, test_actor_id)
        return config_service.activate(info.id, test_actor_id)

    return _make

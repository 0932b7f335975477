"""
Pytest fixtures for the claims kernel test suite.

Provides:
- Structured logging capture
- A deterministic clock and a standard user directory
- In-memory and SQLite-backed claim stores
- A wired WorkflowCoordinator and a claim submission factory

SQLite stores use a file under ``tmp_path`` so that several threads can
open their own connections to the same database.
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest

from claims_config.schema import WorkflowConfig
from claims_kernel.db.engine import (
    create_engine_from_url,
    create_tables,
    make_session_factory,
)
from claims_kernel.domain.claim import ClaimSubmission, Role
from claims_kernel.domain.clock import DeterministicClock
from claims_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from claims_kernel.services.claim_store import InMemoryClaimStore
from claims_kernel.services.sql_claim_store import SqlAlchemyClaimStore
from claims_kernel.services.user_directory import DirectoryUser, InMemoryUserDirectory
from claims_services.event_bus import EventBus
from claims_services.workflow_coordinator import WorkflowCoordinator

# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
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
    Capture claims_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "claim_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("claims_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Clock / config / directory
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return WorkflowConfig()


STANDARD_USERS = [
    DirectoryUser("emp-eng", Role.EMPLOYEE, "engineering", "Erin Employee"),
    DirectoryUser("emp-sales", Role.EMPLOYEE, "sales", "Sam Seller"),
    DirectoryUser("mgr-eng", Role.MANAGER, "engineering", "Morgan Manager"),
    DirectoryUser("mgr-eng-2", Role.MANAGER, "engineering", "Max Manager"),
    DirectoryUser("mgr-sales", Role.MANAGER, "sales", "Quinn Manager"),
    DirectoryUser("hr-1", Role.HR, "people", "Harper HR"),
    DirectoryUser("admin-1", Role.ADMINISTRATOR, "finance", "Ari Admin"),
]


@pytest.fixture
def directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory(list(STANDARD_USERS))


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def memory_store() -> InMemoryClaimStore:
    return InMemoryClaimStore()


@pytest.fixture
def sqlite_engine(tmp_path):
    engine = create_engine_from_url(f"sqlite:///{tmp_path / 'claims.db'}", busy_timeout=10.0)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_store(sqlite_engine) -> SqlAlchemyClaimStore:
    return SqlAlchemyClaimStore(make_session_factory(sqlite_engine))


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request):
    """Runs the test once per ClaimStore implementation."""
    if request.param == "memory":
        return InMemoryClaimStore()
    return request.getfixturevalue("sql_store")


# =============================================================================
# Submissions and the coordinator
# =============================================================================


@pytest.fixture
def make_submission():
    """Factory for ClaimSubmission with sensible, low-risk defaults."""

    def _make(**overrides) -> ClaimSubmission:
        values = dict(
            employee_id="emp-eng",
            department="engineering",
            category="travel",
            amount=Decimal("120.50"),
            currency="USD",
            expense_date=date(2024, 2, 25),
            description="Train ticket to customer site",
            receipt_refs=("receipt-001",),
            vendor="Rail Co",
        )
        values.update(overrides)
        return ClaimSubmission(**values)

    return _make


@pytest.fixture
def coordinator(memory_store, directory, workflow_config, deterministic_clock):
    coord = WorkflowCoordinator(
        memory_store,
        directory,
        config=workflow_config,
        clock=deterministic_clock,
        event_bus=EventBus(),
    )
    coord.start()
    yield coord
    coord.shutdown()


@pytest.fixture
def submit(coordinator, make_submission, deterministic_clock):
    """Submit a claim through the coordinator, one second after the last one."""

    def _submit(**overrides):
        deterministic_clock.advance(1)
        return coordinator.submit(make_submission(**overrides))

    return _submit



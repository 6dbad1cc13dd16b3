"""Global test fixtures and shared test infrastructure.

Provides:
- Environment variable defaults (must be set before any app import)
- FakeResult / FakeScalarResult matching SQLAlchemy Result interface
- FakeAsyncSession matching SQLAlchemy AsyncSession interface
- Execute handler helpers (entity_handler, sequence_handler)
- A real in-memory SQLite session for service tests (``db_session``)
- Model factories (build_user, make_user, make_loan, make_request)
- Shared pytest fixtures for dependency overrides and the rate limiter
"""

from __future__ import annotations

import os

# Environment defaults; the app reads Settings on import.
os.environ.setdefault("SECRET_KEY", "test-secret-key-boot")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SYNC_ENABLED", "false")
os.environ.setdefault("SEED_ADMIN_USERNAME", "admin")
os.environ.setdefault("SEED_ADMIN_PASSWORD", "Password123!")

from datetime import datetime, timezone
from itertools import count
from typing import Any, Callable

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from slowapi import Limiter
from slowapi.util import get_remote_address

from app import models  # noqa: F401
from app.api import deps
from app.db.base import Base
from app.db.session import AsyncSessionLocal, engine, get_db
from app.main import app
from app.models.assignment_request import AssignmentRequest
from app.models.loan_application import LoanApplication
from app.models.user import User


# ---------------------------------------------------------------------------
# Sentinel
# ---------------------------------------------------------------------------

_UNSET = object()
_ids = count(1000)


# ---------------------------------------------------------------------------
# FakeResult / FakeScalarResult: mimics sqlalchemy.engine.Result
# ---------------------------------------------------------------------------


class FakeScalarResult:
    """Mimics the object returned by ``Result.scalars()``."""

    def __init__(self, items: list | None = None) -> None:
        self._items = list(items or [])

    def all(self) -> list:
        return list(self._items)

    def first(self):
        return self._items[0] if self._items else None


class FakeResult:
    """Mimics ``sqlalchemy.engine.Result``.

    ``scalar`` feeds ``.scalar_one_or_none()`` / ``.scalar_one()``; ``items``
    feeds ``.scalars()``; ``rowcount`` mirrors DML results.
    """

    def __init__(
        self,
        *,
        scalar: Any = _UNSET,
        rows: list | None = None,
        items: list | None = None,
        rowcount: int = 0,
    ) -> None:
        self._scalar = scalar
        self._rows = rows or []
        self._items = items or []
        self.rowcount = rowcount

    def scalar_one_or_none(self):
        if self._scalar is _UNSET:
            return None
        return self._scalar

    def scalar_one(self):
        if self._scalar is _UNSET or self._scalar is None:
            from sqlalchemy.exc import NoResultFound

            raise NoResultFound()
        return self._scalar

    def scalars(self) -> FakeScalarResult:
        return FakeScalarResult(self._items)

    def all(self) -> list:
        return list(self._rows)


# ---------------------------------------------------------------------------
# FakeAsyncSession: mimics sqlalchemy.ext.asyncio.AsyncSession
# ---------------------------------------------------------------------------


class FakeAsyncSession:
    """Fake ``AsyncSession`` implementing the methods production code calls.

    Configure responses via ``on_execute``, ``on_execute_return``, and ``on_get``.
    """

    def __init__(self) -> None:
        self.added: list[Any] = []
        self.deleted: list[Any] = []
        self.committed: bool = False
        self.rolled_back: bool = False
        self._execute_handlers: list[Callable] = []
        self._get_store: dict[tuple, Any] = {}
        self._default_result = FakeResult()

    def on_execute(self, handler: Callable) -> FakeAsyncSession:
        """Register a handler: ``handler(stmt) -> FakeResult | None``."""
        self._execute_handlers.append(handler)
        return self

    def on_execute_return(self, result: FakeResult) -> FakeAsyncSession:
        self._execute_handlers.append(lambda _stmt: result)
        return self

    def on_get(self, model_class: type, pk: Any, value: Any) -> FakeAsyncSession:
        self._get_store[(model_class, str(pk))] = value
        return self

    async def execute(self, stmt, *args, **kwargs):
        for handler in self._execute_handlers:
            result = handler(stmt)
            if result is not None:
                return result
        return self._default_result

    def add(self, obj: Any) -> None:
        self.added.append(obj)
        if hasattr(obj, "id") and getattr(obj, "id", None) is None:
            obj.id = next(_ids)

    async def delete(self, obj: Any) -> None:
        self.deleted.append(obj)

    async def flush(self) -> None:
        return None

    async def commit(self) -> None:
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True

    async def refresh(self, obj: Any, attribute_names: list[str] | None = None) -> None:
        return None

    async def get(self, model: type, pk: Any, **kwargs):
        return self._get_store.get((model, str(pk)))


# ---------------------------------------------------------------------------
# Execute handler helpers
# ---------------------------------------------------------------------------


def entity_handler(entity_class: type, result: FakeResult) -> Callable:
    """Return *result* when the query selects *entity_class*."""

    def _handler(stmt):
        descriptions = getattr(stmt, "column_descriptions", None)
        if descriptions and descriptions[0].get("entity") is entity_class:
            return result
        return None

    return _handler


def sequence_handler(results: list[FakeResult]) -> Callable:
    """Return results sequentially, one per ``execute()`` call."""
    iterator = iter(results)

    def _handler(_stmt):
        return next(iterator, None)

    return _handler


# ---------------------------------------------------------------------------
# Real database session (in-memory SQLite, fresh per test)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_session():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        yield session
    # In-memory SQLite lives on the pooled connection; disposing drops it.
    await engine.dispose()


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


def build_user(
    *,
    username: str | None = None,
    role: str = "officer",
    branches: str = "",
    **overrides: Any,
) -> User:
    """Unsaved user with an id, for tests that never touch the database."""
    defaults: dict[str, Any] = dict(
        id=next(_ids),
        username=username or f"user{next(_ids)}",
        role=role,
        branches=branches,
        hashed_password=None,
        display_name=None,
        email=None,
        created_at=datetime.now(timezone.utc),
    )
    defaults.update(overrides)
    return User(**defaults)


async def make_user(
    db,
    username: str,
    *,
    role: str = "officer",
    branches: str = "",
    **overrides: Any,
) -> User:
    user = User(username=username, role=role, branches=branches, **overrides)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_loan(
    db,
    *,
    branch: str = "Didube",
    status: str = "pending",
    assigned_to_id: int | None = None,
    details: dict | None = None,
    created_at: datetime | None = None,
    **overrides: Any,
) -> LoanApplication:
    entry_id = overrides.pop("wp_entry_id", None) or f"entry-{next(_ids)}"
    loan = LoanApplication(
        wp_entry_id=entry_id,
        first_name=overrides.pop("first_name", "Nino"),
        last_name=overrides.pop("last_name", "Beridze"),
        email=overrides.pop("email", "nino@example.com"),
        mobile=overrides.pop("mobile", "599123456"),
        branch=branch,
        status=status,
        assigned_to_id=assigned_to_id,
        verification_status=overrides.pop("verification_status", False),
        details=details if details is not None else {"31": "01001012345", "16": "Consumer", "14": "5000"},
        **overrides,
    )
    if created_at is not None:
        loan.created_at = created_at
    db.add(loan)
    await db.commit()
    await db.refresh(loan)
    return loan


async def make_request(db, loan: LoanApplication, officer: User, *, status: str = "pending") -> AssignmentRequest:
    request = AssignmentRequest(loan_id=loan.id, requested_by_id=officer.id, status=status)
    db.add(request)
    await db.commit()
    await db.refresh(request)
    return request


# ---------------------------------------------------------------------------
# Shared pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _disable_rate_limiter():
    """Fresh in-memory limiter per test so limits never leak between tests."""
    original = app.state.limiter
    app.state.limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
    yield
    app.state.limiter = original


@pytest.fixture
def fake_db() -> FakeAsyncSession:
    return FakeAsyncSession()


@pytest.fixture
def test_user() -> User:
    return build_user(username="officer1", role="officer", branches="Didube")


@pytest.fixture
def override_deps(fake_db, test_user):
    """Standard dependency overrides: db and current_user."""

    async def _get_db():
        yield fake_db

    async def _get_user():
        return test_user

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[deps.get_current_user] = _get_user

    yield

    app.dependency_overrides.clear()


@pytest.fixture
def client(override_deps) -> TestClient:
    # No context manager: startup (seeding, scheduler) stays off in tests.
    return TestClient(app)

"""
Pytest configuration for the LUME backend tests.

AnyIO runs the async tests on asyncio only. Time is injected through a
FakeClock so subscription boundaries can be crossed without sleeping.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from lume.database import init_db, make_engine, make_session_factory
from lume.identity_store import SqlIdentityStore
from lume.session import SessionManager
from lume.snapshots import SnapshotStore
from utils.fake_store import FakeIdentityStore

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def profile_data(**overrides) -> dict:
    data = {
        "name": "Ana Souza",
        "email": "ana@clinic.com.br",
        "password": "secret123",
        "confirm_password": "secret123",
        "phone": "(11) 98765-4321",
        "city": "Sao Paulo",
        "state": "sp",
        "specialty": "Psicologia",
        "registration_number": "CRP 06/12345",
    }
    data.update(overrides)
    return data


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_store() -> FakeIdentityStore:
    return FakeIdentityStore()


@pytest.fixture
def snapshots(tmp_path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "state" / "session-test.json")


@pytest.fixture
def manager(fake_store, snapshots, clock) -> SessionManager:
    return SessionManager(fake_store, snapshots, clock=clock)


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory) -> SqlIdentityStore:
    # Token expiry runs on the real clock: python-jose checks exp against it.
    return SqlIdentityStore(session_factory, secret_key="test-secret", token_expire_minutes=60)

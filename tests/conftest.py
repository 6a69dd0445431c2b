"""Shared fixtures: a throwaway SQLite ledger and controllable clocks."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from shield.app.core.config import Settings
from shield.app.db.async_session import build_async_engine, build_session_maker, init_models


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeUtcClock:
    """Aware-UTC datetime clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now += delta


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def utc_clock():
    return FakeUtcClock()


@pytest.fixture
def sqlite_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'shield.db'}",
        redis_enabled=False,
        store_timeout_seconds=5.0,
        cleanup_enabled=False,
        admin_token="admin-secret",
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def engine(sqlite_settings):
    engine = build_async_engine(sqlite_settings)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return build_session_maker(engine)

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from loyalty_ledger.db.base import Base  # noqa: E402
from loyalty_ledger.db.session import build_engine, build_session_factory  # noqa: E402
import loyalty_ledger.models  # noqa: E402,F401
from loyalty_ledger.observability.ledger import get_ledger_store  # noqa: E402
from loyalty_ledger.observability.scheduler import get_scheduler_store  # noqa: E402


class FrozenClock:
    """Manually advanced clock for deterministic expiry dates."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


@pytest.fixture(autouse=True)
def reset_observability():
    get_ledger_store().reset()
    get_scheduler_store().reset()
    yield
    get_ledger_store().reset()
    get_scheduler_store().reset()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path: Path):
    """File-backed database with the production locking hooks, one connection per session."""

    engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'loyalty.db'}",
        echo=False,
        lock_timeout_seconds=10.0,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()

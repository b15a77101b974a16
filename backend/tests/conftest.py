import os
from typing import AsyncIterator

# Module-level engine creation reads these on first import.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_SECRET", "testsecret")
os.environ.setdefault("TIMEZONE", "UTC")

import pytest_asyncio  # noqa: E402
from gamebox.database import build_engine, build_session_factory, create_schema  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402


@pytest_asyncio.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()

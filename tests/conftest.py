import os
import sys
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure project root is on sys.path so `import cmspay` works when running pytest from root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Force test settings before any cmspay imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ORACLE_TYPE"] = "mock"

from cmspay.db.base import Base  # noqa: E402
from cmspay.db.store import InvoiceStore  # noqa: E402
from cmspay.payments.config import PollerConfig  # noqa: E402
from cmspay.payments.oracle.mock_oracle import MockTransactionOracle  # noqa: E402


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_factory) -> InvoiceStore:
    return InvoiceStore(session_factory=session_factory)


@pytest.fixture
def oracle() -> MockTransactionOracle:
    return MockTransactionOracle()


@pytest.fixture
def poller_config() -> PollerConfig:
    """Poller config with no sleeping between checks."""
    return PollerConfig(check_gap_seconds=0, min_confirmations=2, oracle_type="mock")

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from uuid import uuid4

# Settings are cached on first use, so the test database must be configured before
# any rmmsync module reads them.
_DB_PATH = Path(tempfile.gettempdir()) / f"rmmsync-test-{uuid4().hex}.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["AUTH_ENABLED"] = "true"
os.environ["SYNC_LOCK_BACKEND"] = "local"
os.environ["EXT_RETRY_BACKOFF_MS"] = "1"

import pytest  # noqa: E402

from rmmsync.domain.models import Base  # noqa: E402
from rmmsync.persistence.db import engine  # noqa: E402


@pytest.fixture(autouse=True)
async def reset_database() -> None:
    # Fresh schema per test; dispose afterwards so pooled connections never cross event loops.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


def pytest_sessionfinish(session, exitstatus) -> None:
    _DB_PATH.unlink(missing_ok=True)

from __future__ import annotations

import asyncio
import sys

from rmmsync.core.logging import configure_logging
from rmmsync.persistence.db import create_all, engine


async def _init() -> int:
    # Local bootstrap only; deployed databases are migrated with `alembic upgrade head`.
    await create_all()
    await engine.dispose()
    print("database schema created")
    return 0


def main() -> int:
    configure_logging()
    try:
        return asyncio.run(_init())
    except Exception as exc:  # noqa: BLE001 - surface bootstrap failures clearly
        print(f"init_db failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import argparse
import asyncio
import sys

from rmmsync.core.logging import configure_logging
from rmmsync.persistence.db import SessionLocal
from rmmsync.services.sync import ReconciliationEngine, select_due_tenants, sync_all_due
from rmmsync.services.sync.locks import build_tenant_locks


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile every tenant whose sync interval has elapsed")
    parser.add_argument("--dry-run", action="store_true", help="List due tenants without syncing")
    return parser


async def _run(args: argparse.Namespace) -> int:
    if args.dry_run:
        async with SessionLocal() as session:
            tenants = await select_due_tenants(session)
        for tenant in tenants:
            print(f"{tenant.id}\t{tenant.name}\tlast_sync={tenant.last_sync}")
        return 0
    engine = ReconciliationEngine(SessionLocal, locks=build_tenant_locks())
    outcomes = await sync_all_due(SessionLocal, engine)
    for outcome in outcomes:
        state = "ok" if outcome.success else f"error: {outcome.error}"
        print(f"{outcome.tenant_id}\t{outcome.tenant_name}\t{state}")
    # Individual tenant failures are reported but do not fail the batch.
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface scan failures clearly
        print(f"sync_due failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from rmmsync.core.logging import configure_logging
from rmmsync.persistence.db import SessionLocal
from rmmsync.services.sync import ReconciliationEngine
from rmmsync.services.sync.locks import build_tenant_locks
from rmmsync.services.sync.queue import enqueue_tenant_sync


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile one tenant against its RMM account")
    parser.add_argument("--tenant-id", type=int, required=True, help="Local tenant id")
    parser.add_argument(
        "--entity-type",
        choices=("devices", "sites", "alerts"),
        default=None,
        help="Single entity type; omit for a full pass",
    )
    parser.add_argument("--enqueue", action="store_true", help="Queue the job for the worker instead")
    return parser


async def _run(args: argparse.Namespace) -> int:
    if args.enqueue:
        job_id = await enqueue_tenant_sync(args.tenant_id, args.entity_type)
        print(f"queued {job_id}")
        return 0
    engine = ReconciliationEngine(SessionLocal, locks=build_tenant_locks())
    if args.entity_type is None:
        result = (await engine.reconcile_tenant(args.tenant_id)).as_dict()
    else:
        result = (await engine.reconcile(args.tenant_id, args.entity_type)).as_dict()
    print(json.dumps(result, indent=2))
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - report sync failures with a non-zero exit
        print(f"sync_tenant failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import argparse
import asyncio
import sys

from rmmsync.core.logging import configure_logging
from rmmsync.persistence.db import SessionLocal
from rmmsync.services.tenants import create_tenant


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Register a tenant for RMM reconciliation")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument("--slug", default=None, help="URL slug; derived from the name when omitted")
    parser.add_argument("--api-url", default=None, help="Tenant RMM API base URL")
    parser.add_argument("--api-key", default=None, help="Tenant RMM API key")
    parser.add_argument("--api-secret", default=None, help="Tenant RMM API secret")
    parser.add_argument("--platform", default=None, help="RMM platform label")
    parser.add_argument("--interval", type=int, default=None, help="Sync interval in minutes")
    parser.add_argument("--contact-email", default=None, help="Tenant contact email")
    parser.add_argument("--disabled", action="store_true", help="Create with sync disabled")
    return parser


async def _create(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        tenant = await create_tenant(
            session,
            name=args.name,
            slug=args.slug,
            rmm_api_url=args.api_url,
            rmm_api_key=args.api_key,
            rmm_api_secret=args.api_secret,
            rmm_platform=args.platform,
            sync_interval_minutes=args.interval,
            contact_email=args.contact_email,
            sync_enabled=False if args.disabled else None,
        )
    print("tenant created:")
    print(f"  id: {tenant.id}")
    print(f"  uid: {tenant.uid}")
    print(f"  slug: {tenant.slug}")
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_create(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_tenant failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

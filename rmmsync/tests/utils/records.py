from __future__ import annotations

from typing import Any

from rmmsync.domain.models import Tenant
from rmmsync.persistence.db import SessionLocal
from rmmsync.providers.rmm.fake import FakeRemoteSource
from rmmsync.services import tenants as tenant_service
from rmmsync.services.sync import ReconciliationEngine
from rmmsync.services.sync.locks import LocalTenantLocks


async def create_test_tenant(name: str = "Acme", **fields: Any) -> Tenant:
    # Credentials are set so the production source factory would accept the tenant.
    fields.setdefault("rmm_api_key", "key")
    fields.setdefault("rmm_api_secret", "secret")
    async with SessionLocal() as session:
        return await tenant_service.create_tenant(session, name=name, **fields)


def engine_for(source: FakeRemoteSource, **kwargs: Any) -> ReconciliationEngine:
    # Every tenant reads from the same in-memory snapshot.
    kwargs.setdefault("locks", LocalTenantLocks(timeout_s=1.0))
    return ReconciliationEngine(SessionLocal, lambda _tenant: source, **kwargs)


def device_record(uid: str, **fields: Any) -> dict[str, Any]:
    record = {"uid": uid, "id": f"{uid}-remote", "name": f"Device {uid}", "status": "online"}
    record.update(fields)
    return record


def site_record(uid: str, **fields: Any) -> dict[str, Any]:
    record = {"uid": uid, "id": f"{uid}-remote", "name": f"Site {uid}", "status": "active"}
    record.update(fields)
    return record


def alert_record(uid: str, **fields: Any) -> dict[str, Any]:
    record = {
        "uid": uid,
        "title": f"Alert {uid}",
        "severity": "warning",
        "status": "active",
        "acknowledged": False,
        "resolved": False,
    }
    record.update(fields)
    return record

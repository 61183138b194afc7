from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rmmsync.core.errors import TenantInactiveError, TenantNotFoundError
from rmmsync.domain.models import Tenant
from rmmsync.persistence.repos import entities as entities_repo
from rmmsync.persistence.repos import history as history_repo
from rmmsync.persistence.repos import sync_runs as sync_runs_repo
from rmmsync.persistence.repos import tenants as tenants_repo
from rmmsync.providers.rmm.base import RemoteRecord, RemoteSource
from rmmsync.providers.rmm.factory import build_remote_source
from rmmsync.services.sync.diff import compute_changed_fields, row_snapshot, to_json_value, tracked_snapshot
from rmmsync.services.sync.locks import TenantLockRegistry, build_tenant_locks
from rmmsync.services.sync.specs import (
    CACHE_MODELS,
    FULL_SYNC_ORDER,
    INACTIVE_STATUS,
    EntitySpec,
    get_spec,
)


logger = logging.getLogger(__name__)

SourceFactory = Callable[[Tenant], RemoteSource]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncCounts:
    created: int = 0
    updated: int = 0
    deactivated: int = 0
    total: int = 0

    def add(self, other: "SyncCounts") -> None:
        self.created += other.created
        self.updated += other.updated
        self.deactivated += other.deactivated
        self.total += other.total

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class FullSyncResult:
    # Insertion order follows the full-pass order: sites, devices, alerts.
    counts: dict[str, SyncCounts] = field(default_factory=dict)

    def totals(self) -> SyncCounts:
        total = SyncCounts()
        for counts in self.counts.values():
            total.add(counts)
        return total

    def as_dict(self) -> dict[str, Any]:
        return {
            **{entity_type: counts.as_dict() for entity_type, counts in self.counts.items()},
            "totals": self.totals().as_dict(),
        }


class ReconciliationEngine:
    """Mirror a tenant's remote devices, sites and alerts into the local store.

    Each pass fetches the full remote snapshot for one entity type, creates or
    merges every remote record, and soft-deactivates local rows the remote no
    longer reports. Every transition is recorded as a history row committed
    together with the mutation, and every pass is bracketed by a sync run
    record. Passes for the same tenant never overlap.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        source_factory: SourceFactory = build_remote_source,
        *,
        locks: TenantLockRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._source_factory = source_factory
        self._locks = locks or build_tenant_locks()
        self._now = clock or _utc_now

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def reconcile(self, tenant_id: int, entity_type: str) -> SyncCounts:
        spec = get_spec(entity_type)
        async with self._locks.hold(tenant_id):
            async with self._session_factory() as session:
                tenant = await self._load_tenant(session, tenant_id)
                if not getattr(tenant, spec.toggle):
                    logger.info("sync_skipped_disabled tenant_id=%s sync_type=%s", tenant_id, entity_type)
                    return SyncCounts()
                return await self._reconcile_entity(session, tenant, spec)

    async def reconcile_tenant(self, tenant_id: int) -> FullSyncResult:
        async with self._locks.hold(tenant_id):
            async with self._session_factory() as session:
                tenant = await self._load_tenant(session, tenant_id)
                enabled = {spec.entity_type: bool(getattr(tenant, spec.toggle)) for spec in FULL_SYNC_ORDER}
                started_at = self._now()
                run_id = await self._start_run(session, tenant_id, "full", started_at)
                result = FullSyncResult()
                source: RemoteSource | None = None
                try:
                    source = self._source_factory(tenant)
                    for spec in FULL_SYNC_ORDER:
                        if not enabled[spec.entity_type]:
                            logger.info(
                                "sync_skipped_disabled tenant_id=%s sync_type=%s", tenant_id, spec.entity_type
                            )
                            result.counts[spec.entity_type] = SyncCounts()
                            continue
                        result.counts[spec.entity_type] = await self._reconcile_entity(
                            session, tenant, spec, source
                        )
                except (Exception, asyncio.CancelledError) as exc:
                    await session.rollback()
                    await self._finish_run(
                        session, run_id, "error", started_at, result.totals(), error_message=_error_text(exc)
                    )
                    logger.error("full_sync_failed tenant_id=%s error=%s", tenant_id, _error_text(exc))
                    raise
                finally:
                    if source is not None:
                        await source.aclose()

                await self._finish_run(session, run_id, "success", started_at, result.totals())
                await tenants_repo.set_last_sync(session, tenant_id, self._now())
                await session.commit()
                logger.info("full_sync_complete tenant_id=%s totals=%s", tenant_id, result.totals().as_dict())
                return result

    async def _load_tenant(self, session: AsyncSession, tenant_id: int) -> Tenant:
        tenant = await tenants_repo.get_by_id(session, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(f"Tenant {tenant_id} not found")
        if not tenant.is_active:
            raise TenantInactiveError(f"Tenant {tenant_id} is inactive")
        return tenant

    async def _reconcile_entity(
        self,
        session: AsyncSession,
        tenant: Tenant,
        spec: EntitySpec,
        source: RemoteSource | None = None,
    ) -> SyncCounts:
        tenant_id = tenant.id
        started_at = self._now()
        run_id = await self._start_run(session, tenant_id, spec.entity_type, started_at)
        counts = SyncCounts()
        owned: RemoteSource | None = None
        try:
            # A pass without a shared source opens its own once the run row exists.
            if source is None:
                source = owned = self._source_factory(tenant)
            remote = await spec.fetch(source)
            counts.total = len(remote)
            local = dict(await entities_repo.list_uid_activity(session, spec.model, tenant_id))
            caches = await self._load_caches(session, tenant_id, spec)
            seen: set[str] = set()

            for record in remote:
                uid = _remote_uid(record)
                if uid is None:
                    logger.warning(
                        "sync_record_without_uid tenant_id=%s sync_type=%s", tenant_id, spec.entity_type
                    )
                    continue
                seen.add(uid)
                if uid in local:
                    created = await self._merge(session, tenant_id, spec, uid, record, caches)
                else:
                    await self._create(session, tenant_id, spec, uid, record, caches)
                    created = True
                local.setdefault(uid, True)
                await session.commit()
                if created:
                    counts.created += 1
                else:
                    counts.updated += 1

            # Soft-deactivate only rows that are still active; already-inactive ones stay untouched.
            for uid, is_active in local.items():
                if not is_active or uid in seen:
                    continue
                if await self._deactivate(session, tenant_id, spec, uid):
                    await session.commit()
                    counts.deactivated += 1
        except (Exception, asyncio.CancelledError) as exc:
            await session.rollback()
            await self._finish_run(
                session, run_id, "error", started_at, counts, error_message=_error_text(exc)
            )
            logger.error(
                "sync_run_failed tenant_id=%s sync_type=%s error=%s",
                tenant_id,
                spec.entity_type,
                _error_text(exc),
            )
            raise
        finally:
            if owned is not None:
                await owned.aclose()

        await self._finish_run(session, run_id, "success", started_at, counts)
        logger.info(
            "sync_run_complete tenant_id=%s sync_type=%s created=%s updated=%s deactivated=%s total=%s",
            tenant_id,
            spec.entity_type,
            counts.created,
            counts.updated,
            counts.deactivated,
            counts.total,
        )
        return counts

    async def _load_caches(
        self, session: AsyncSession, tenant_id: int, spec: EntitySpec
    ) -> dict[str, dict[str, str]]:
        return {
            name: await entities_repo.load_name_cache(session, CACHE_MODELS[name], tenant_id)
            for name in spec.caches
        }

    def _mapped_values(
        self,
        spec: EntitySpec,
        record: RemoteRecord,
        caches: dict[str, dict[str, str]],
        row: Any | None = None,
    ) -> dict[str, Any]:
        values = spec.extract(record)
        for fallback in spec.fallbacks:
            if fallback.column in values:
                continue
            ref_uid = values.get(fallback.uid_column)
            if ref_uid is None and row is not None:
                ref_uid = getattr(row, fallback.uid_column)
            name = caches.get(fallback.cache, {}).get(ref_uid) if ref_uid else None
            if name:
                values[fallback.column] = name
        return values

    async def _create(
        self,
        session: AsyncSession,
        tenant_id: int,
        spec: EntitySpec,
        uid: str,
        record: RemoteRecord,
        caches: dict[str, dict[str, str]],
    ) -> None:
        values = self._mapped_values(spec, record, caches)
        values.setdefault("status", spec.default_status)
        values.setdefault("remote_id", uid)
        row = await entities_repo.insert_entity(
            session,
            spec.model,
            {
                **values,
                "tenant_id": tenant_id,
                "uid": uid,
                "is_active": True,
                "metadata_json": to_json_value(record),
                "last_synced_at": self._now(),
            },
        )
        await history_repo.append_history(
            session,
            spec.history_model,
            tenant_id=tenant_id,
            entity_uid=uid,
            action="created",
            old_status=None,
            new_status=row.status,
            old_data=None,
            new_data=to_json_value(record),
            changed_fields=compute_changed_fields({}, tracked_snapshot(row)),
        )

    async def _merge(
        self,
        session: AsyncSession,
        tenant_id: int,
        spec: EntitySpec,
        uid: str,
        record: RemoteRecord,
        caches: dict[str, dict[str, str]],
    ) -> bool:
        row = await entities_repo.get_by_uid(session, spec.model, tenant_id, uid)
        if row is None:
            await self._create(session, tenant_id, spec, uid, record, caches)
            return True
        old_data = row_snapshot(row)
        old_state = tracked_snapshot(row)
        for column, value in self._mapped_values(spec, record, caches, row).items():
            setattr(row, column, value)
        # A record the remote reports again is active again, whatever it was before.
        row.is_active = True
        row.metadata_json = to_json_value(record)
        row.last_synced_at = self._now()
        changed = compute_changed_fields(old_state, tracked_snapshot(row))
        if changed:
            await history_repo.append_history(
                session,
                spec.history_model,
                tenant_id=tenant_id,
                entity_uid=uid,
                action=spec.update_action(changed),
                old_status=old_data.get("status"),
                new_status=row.status,
                old_data=old_data,
                new_data=to_json_value(record),
                changed_fields=changed,
            )
        await session.flush()
        return False

    async def _deactivate(self, session: AsyncSession, tenant_id: int, spec: EntitySpec, uid: str) -> bool:
        row = await entities_repo.get_by_uid(session, spec.model, tenant_id, uid)
        if row is None or not row.is_active:
            return False
        old_data = row_snapshot(row)
        new_data = {"status": INACTIVE_STATUS, "is_active": False}
        row.status = INACTIVE_STATUS
        row.is_active = False
        await history_repo.append_history(
            session,
            spec.history_model,
            tenant_id=tenant_id,
            entity_uid=uid,
            action="deactivated",
            old_status=old_data.get("status"),
            new_status=INACTIVE_STATUS,
            old_data=old_data,
            new_data=new_data,
            changed_fields=compute_changed_fields(old_data, new_data),
        )
        return True

    async def _start_run(
        self, session: AsyncSession, tenant_id: int, sync_type: str, started_at: datetime
    ) -> int:
        run = await sync_runs_repo.start_run(
            session, tenant_id=tenant_id, sync_type=sync_type, started_at=started_at
        )
        await session.commit()
        return run.id

    async def _finish_run(
        self,
        session: AsyncSession,
        run_id: int,
        status: str,
        started_at: datetime,
        counts: SyncCounts,
        *,
        error_message: str | None = None,
    ) -> None:
        try:
            await sync_runs_repo.finish_run(
                session,
                run_id,
                status=status,
                started_at=started_at,
                completed_at=self._now(),
                processed=counts.total,
                created=counts.created,
                updated=counts.updated,
                deactivated=counts.deactivated,
                error_message=error_message,
            )
            await session.commit()
        except SQLAlchemyError as exc:
            # Finalizing must not mask the failure that ended the pass.
            await session.rollback()
            if status != "error":
                raise
            logger.error("sync_run_finalize_failed run_id=%s", run_id, exc_info=exc)


def _remote_uid(record: RemoteRecord) -> str | None:
    uid = record.get("uid")
    if uid is None or uid == "":
        return None
    return str(uid)


def _error_text(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__

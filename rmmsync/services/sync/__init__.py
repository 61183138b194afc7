from rmmsync.services.sync.engine import FullSyncResult, ReconciliationEngine, SyncCounts
from rmmsync.services.sync.scheduler import TenantSyncOutcome, select_due_tenants, sync_all_due

__all__ = [
    "FullSyncResult",
    "ReconciliationEngine",
    "SyncCounts",
    "TenantSyncOutcome",
    "select_due_tenants",
    "sync_all_due",
]

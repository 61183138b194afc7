from __future__ import annotations


class RmmSyncError(Exception):
    """Base error for rmmsync."""


class TenantNotFoundError(RmmSyncError):
    """No tenant exists for the given identifier."""


class TenantInactiveError(RmmSyncError):
    """Tenant exists but is deactivated; it must not be synchronized."""


class TenantSlugConflictError(RmmSyncError):
    """Slug is already taken by another tenant."""


class SyncInProgressError(RmmSyncError):
    """Another reconciliation pass holds the tenant lock."""


class RemoteSourceError(RmmSyncError):
    """Remote RMM API failure."""


class RemoteAuthError(RemoteSourceError):
    """Remote RMM authentication/authorization failure."""


class RemoteApiError(RemoteSourceError):
    """Remote RMM request failure (HTTP error status or transport failure)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

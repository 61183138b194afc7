from __future__ import annotations

from rmmsync.core.config import Settings, get_settings
from rmmsync.core.errors import RemoteAuthError
from rmmsync.domain.models import Tenant
from rmmsync.providers.rmm.base import RmmCredentials
from rmmsync.providers.rmm.client import RmmApiClient


def credentials_for_tenant(tenant: Tenant, settings: Settings | None = None) -> RmmCredentials:
    # Tenant credentials win; global settings fill any gap.
    settings = settings or get_settings()
    base_url = tenant.rmm_api_url or settings.rmm_api_url
    api_key = tenant.rmm_api_key or settings.rmm_api_key
    api_secret = tenant.rmm_api_secret or settings.rmm_api_secret
    if not api_key or not api_secret:
        raise RemoteAuthError(f"No RMM API credentials configured for tenant {tenant.id}")
    return RmmCredentials(
        base_url=base_url,
        api_key=api_key,
        api_secret=api_secret,
        platform=tenant.rmm_platform or settings.rmm_platform,
    )


def build_remote_source(tenant: Tenant) -> RmmApiClient:
    # A fresh client per tenant pass; nothing is shared between tenants.
    return RmmApiClient(credentials_for_tenant(tenant))

from __future__ import annotations

import hmac
from typing import AsyncGenerator

from fastapi import Header, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from rmmsync.core.config import get_settings
from rmmsync.persistence.db import SessionLocal, get_session
from rmmsync.services.sync.engine import ReconciliationEngine


_sync_engine: ReconciliationEngine | None = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_sync_engine() -> ReconciliationEngine:
    # Process-wide engine so every request shares one set of tenant locks.
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = ReconciliationEngine(SessionLocal)
    return _sync_engine


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


async def require_admin(authorization: str | None = Header(default=None)) -> None:
    # Single operator token; compared in constant time.
    settings = get_settings()
    if not settings.auth_enabled:
        return
    if not settings.admin_token:
        raise _auth_error("Admin token is not configured")
    token = _parse_bearer_token(authorization)
    if token is None or not hmac.compare_digest(token.encode("utf-8"), settings.admin_token.encode("utf-8")):
        raise _auth_error("Missing or invalid bearer token")


class Page:
    """Validated limit/offset pair, clamped to the configured maximum page size."""

    def __init__(
        self,
        limit: int | None = Query(default=None, ge=1),
        offset: int = Query(default=0, ge=0),
    ) -> None:
        settings = get_settings()
        self.limit = min(limit or settings.api_default_page_size, settings.api_max_page_size)
        self.offset = offset

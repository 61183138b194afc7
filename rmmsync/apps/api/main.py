from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rmmsync.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    invalid_sort_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from rmmsync.apps.api.response import API_VERSION
from rmmsync.apps.api.routes.health import router as health_router
from rmmsync.apps.api.routes.inventory import router as inventory_router
from rmmsync.apps.api.routes.sync import router as sync_router
from rmmsync.apps.api.routes.tenants import router as tenants_router
from rmmsync.core.config import get_settings
from rmmsync.core.errors import RmmSyncError
from rmmsync.core.logging import configure_logging
from rmmsync.services.query import InvalidSortError


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="rmmsync API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.debug(
            "request_complete method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RmmSyncError, domain_exception_handler)
    app.add_exception_handler(InvalidSortError, invalid_sort_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(tenants_router, prefix=f"/{API_VERSION}")
    app.include_router(inventory_router, prefix=f"/{API_VERSION}")
    app.include_router(sync_router, prefix=f"/{API_VERSION}")
    # Unversioned liveness probe for load balancers.
    app.include_router(health_router, include_in_schema=False)

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="rmmsync API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Advertise the admin bearer scheme on every route but health.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="rmmsync API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        if settings.auth_enabled:
            for path, operations in schema.get("paths", {}).items():
                if path == "/v1/health":
                    continue
                for operation in operations.values():
                    operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]

    return app


app = create_app()

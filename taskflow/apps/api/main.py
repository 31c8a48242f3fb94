from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskflow.apps.api.deps import Services, build_services
from taskflow.apps.api.errors import (
    http_exception_handler,
    starlette_http_exception_handler,
    taskflow_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from taskflow.apps.api.response import API_VERSION
from taskflow.apps.api.routes.audit import router as audit_router
from taskflow.apps.api.routes.bulk_actions import router as bulk_actions_router
from taskflow.apps.api.routes.databases import router as databases_router
from taskflow.apps.api.routes.entities import router as entities_router
from taskflow.apps.api.routes.health import router as health_router
from taskflow.apps.api.routes.ops import router as ops_router
from taskflow.apps.api.routes.recovery import router as recovery_router
from taskflow.core.errors import TaskflowError
from taskflow.core.logging import configure_logging


logger = logging.getLogger(__name__)


def create_app(services: Services | None = None) -> FastAPI:
    configure_logging()
    if services is None:
        from taskflow.persistence.db import SessionLocal

        services = build_services(SessionLocal)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        # Cached backend handles are process-lifetime; close them on shutdown only.
        await app.state.services.cache.close_all()

    app = FastAPI(title="Taskflow Core API", lifespan=lifespan)
    app.state.services = services

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_complete method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(TaskflowError, taskflow_exception_handler)
    app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Mount versioned v1 API routes.
    app.include_router(entities_router, prefix=f"/{API_VERSION}")
    app.include_router(recovery_router, prefix=f"/{API_VERSION}")
    app.include_router(bulk_actions_router, prefix=f"/{API_VERSION}")
    app.include_router(databases_router, prefix=f"/{API_VERSION}")
    app.include_router(audit_router, prefix=f"/{API_VERSION}")
    app.include_router(ops_router, prefix=f"/{API_VERSION}")
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    # Unversioned health probe for load balancers.
    app.include_router(health_router, include_in_schema=False)
    return app

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from coursehub.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from coursehub.apps.api.response import API_VERSION, REQUEST_ID_HEADER, request_id_for
from coursehub.apps.api.routes.health import router as health_router
from coursehub.apps.api.routes.likes import router as likes_router
from coursehub.apps.api.routes.notifications import router as notifications_router
from coursehub.core.config import get_settings
from coursehub.core.errors import CourseHubError
from coursehub.core.logging import configure_logging
from coursehub.persistence.db import dispose_engine
from coursehub.persistence.guards import TenantPredicateError
from coursehub.services.registry import ServiceRegistry, build_default_registry


logger = logging.getLogger(__name__)


def create_app(registry: ServiceRegistry | None = None) -> FastAPI:
    configure_logging()
    owns_registry = registry is None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Subscribers are wired at build time, so the bus can start before the first request.
        if app.state.registry is None:
            app.state.registry = build_default_registry()
        if not app.state.registry.bus.running:
            await app.state.registry.start()
        try:
            yield
        finally:
            await app.state.registry.stop()
            if owns_registry:
                await dispose_engine()

    app = FastAPI(title=get_settings().app_name, lifespan=lifespan)
    app.state.registry = registry

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request_id_for(request)
        response = await call_next(request)
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(CourseHubError)
    async def _domain_exception_handler(request: Request, exc: CourseHubError):
        return await domain_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(notifications_router, prefix=f"/{API_VERSION}")
    app.include_router(likes_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()


def run() -> None:
    # Console entry point; production deployments may run any ASGI server against `app`.
    settings = get_settings()
    uvicorn.run("coursehub.apps.api.main:app", host=settings.api_host, port=settings.api_port)

"""FastAPI application factory for kubemirror.

Usage::

    from kubemirror.api.app import create_app

    app = create_app(cache=cache, config=config, k8s_version="1.31")

Used by both the production bootstrap (``kubemirror.app``) and tests.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kubemirror.api.routes import ops_router, router
from kubemirror.api.schemas import ErrorResponse
from kubemirror.observability.logging import get_logger

_log = get_logger("api.app")

_API_PREFIX = "/api/v1"


def create_app(cache: Any, config: Any = None, k8s_version: str = "") -> FastAPI:
    """Create the read-only cache API.

    Args:
        cache:        ObjectCache (anything with ``get``/``snapshot``/``__len__``).
        config:       Optional KubeMirrorConfig, used for the cluster name.
        k8s_version:  Server version reported by /version.
    """
    from kubemirror import __version__

    cluster = ""
    if config is not None and hasattr(config, "cluster"):
        cluster = config.cluster or ""

    app = FastAPI(
        title="kubemirror",
        summary="In-memory mirror of Kubernetes objects",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    app.state.cache = cache
    app.state.config = config
    app.state.cluster = cluster
    app.state.k8s_version = k8s_version

    app.include_router(ops_router)
    app.include_router(router, prefix=_API_PREFIX)

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = exc.errors()
        first_msg = str(errors[0].get("msg", "")) if errors else ""
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="INVALID_REQUEST", detail=first_msg).model_dump(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        _request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        error = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=error, detail=str(exc.detail)).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                detail="An unexpected error occurred.",
            ).model_dump(),
        )

    return app

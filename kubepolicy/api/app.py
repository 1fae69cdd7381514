"""FastAPI application factory for KubePolicy.

Usage::

    from kubepolicy.api.app import create_app

    app = create_app(controller=controller)

Used by both the production bootstrap (``kubepolicy.app``) and tests.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from kubepolicy.api.routes import probes, router
from kubepolicy.api.schemas import ErrorResponse

_log = structlog.get_logger(component="api.app")

_API_PREFIX = "/api/v1"


def create_app(controller: Any, config: Any = None) -> FastAPI:
    """Create and configure the KubePolicy FastAPI application.

    Args:
        controller: The running Controller.  Topology endpoints call its
                    ``build_topology()``; probes read its state.
        config:     KubePolicyConfig, exposed to handlers as ``app.state.config``.
    """
    from kubepolicy import __version__

    app = FastAPI(
        title="KubePolicy",
        summary="Gateway API policy topology",
        version=__version__,
        description=(
            "Read-only view of the policy topology built by the KubePolicy "
            "controller: targetables, attached policies and effective policies per path."
        ),
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    app.state.controller = controller
    app.state.config = config

    app.include_router(probes)
    app.include_router(router, prefix=_API_PREFIX)

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Map request validation errors to the error envelope."""
        errors = exc.errors()
        first_msg = str(errors[0].get("msg", "")) if errors else ""
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="INVALID_REQUEST", detail=first_msg).model_dump(),
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

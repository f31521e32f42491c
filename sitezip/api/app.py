"""FastAPI application factory.

Lifespan
--------
On startup the app builds the workflow engine (stored on
``app.state.engine``) and resumes every instance a previous process left
unfinished.  On shutdown the engine's worker pool is stopped without
waiting and queued runs that have not started are dropped.  Those
instances, like interrupted ones, are picked up again by the next start.

Routes
------
    POST /              Create a workflow instance (also POST /workflows)
    GET  /status?id=    Instance status          (also GET /workflows/{id})

Every error response has the shape ``{"error": "..."}`` and every response
allows any origin.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sitezip.api.routers import workflows as workflows_router
from sitezip.config import configure_logging
from sitezip.workflow import WorkflowEngine, build_engine

logger = logging.getLogger(__name__)


def create_app(engine: Optional[WorkflowEngine] = None) -> FastAPI:
    """Return a fully-configured FastAPI application instance.

    Args:
        engine: Pre-built engine (tests).  When omitted one is built from
            ``settings`` during startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        app.state.engine = engine or build_engine()
        resumed = app.state.engine.resume_incomplete()
        if resumed:
            logger.info("Resumed %d unfinished workflow instance(s)", len(resumed))
        try:
            yield
        finally:
            app.state.engine.shutdown(wait=False)

    app = FastAPI(
        title="sitezip API",
        description=(
            "Turns a sitemap URL into a downloadable zip of per-page markdown "
            "documents.  Work runs as durable, resumable workflow instances."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = "Not found" if exc.status_code == 404 and exc.detail == "Not Found" else exc.detail
        return JSONResponse({"error": detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"error": "Invalid request."}, status_code=400)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            {"error": f"Failed to process request: {exc}"}, status_code=500
        )

    app.include_router(workflows_router.router, tags=["workflows"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn sitezip.api.app:app
app = create_app()

"""Workflow instance endpoints.

Routes
------
POST /                 Body: {"sitemapUrl": "https://..."}   → create
POST /workflows        Same as ``POST /``
GET  /status?id=<id>                                         → status
GET  /workflows/{id}   Same as ``GET /status?id=<id>``
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

from fastapi import APIRouter, Body, HTTPException, Request
from pydantic import BaseModel

from sitezip.errors import InstanceNotFound, ValidationError
from sitezip.workflow import WorkflowEngine

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class WorkflowCreated(BaseModel):
    id: str
    status: str


class WorkflowStatus(BaseModel):
    id: str
    status: str
    error: Optional[str] = None
    output: Optional[dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine


def _lookup(request: Request, instance_id: str) -> dict[str, Any]:
    try:
        instance = _engine(request).status(instance_id)
    except InstanceNotFound as exc:
        raise HTTPException(status_code=404, detail="Workflow instance not found") from exc
    except sqlite3.Error as exc:
        logger.error("Status lookup for %s failed: %s", instance_id, exc)
        raise HTTPException(
            status_code=500, detail=f"Failed to get workflow status: {exc}"
        ) from exc
    return instance.to_dict()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/", response_model=WorkflowCreated)
@router.post("/workflows", response_model=WorkflowCreated)
def create_workflow(request: Request, payload: Any = Body(None)) -> dict[str, Any]:
    """Start a new workflow instance for the posted sitemap URL.

    Malformed JSON never reaches here; it is answered with a 400 by the
    app-level request-validation handler.
    """
    try:
        instance = _engine(request).create(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail="Missing or invalid sitemapUrl in request body."
        ) from exc

    return {"id": instance.id, "status": instance.status}


@router.get("/status", response_model=WorkflowStatus)
def workflow_status(request: Request, id: Optional[str] = None) -> dict[str, Any]:  # noqa: A002
    """Status of an instance, with its output or error once terminal."""
    if not id:
        raise HTTPException(
            status_code=400,
            detail="Missing workflow instance ID. Use /status?id=your-instance-id",
        )
    return _lookup(request, id)


@router.get("/workflows/{instance_id}", response_model=WorkflowStatus)
def get_workflow(instance_id: str, request: Request) -> dict[str, Any]:
    """Path-parameter form of ``/status``."""
    return _lookup(request, instance_id)

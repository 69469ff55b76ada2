"""
API Routes
==========

REST API endpoints for sync control, status, conflicts and configuration.

Author: CADSync Project
License: MIT
"""

import asyncio
import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from ..config.config_loader import ConfigLoader
from ..config.schema import Config
from ..core.exceptions import ConflictNotFoundError, ResolutionError, SyncInProgressError
from ..core.models import ConflictResolution, ProgressOperation
from ..scheduler.task_scheduler import build_cron_trigger
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Global references (set by app.py)
_orchestrator = None
_config_loader: Optional[ConfigLoader] = None

KEEPALIVE_SECONDS = 15.0
POLL_SECONDS = 0.25


def set_orchestrator(orchestrator):
    """Set orchestrator instance for routes."""
    global _orchestrator
    _orchestrator = orchestrator


def get_orchestrator():
    """Get orchestrator instance."""
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return _orchestrator


def set_config_loader(loader: ConfigLoader):
    """Set config loader used by the configuration routes."""
    global _config_loader
    _config_loader = loader


def get_config_loader() -> ConfigLoader:
    global _config_loader
    if _config_loader is None:
        _config_loader = ConfigLoader()
    return _config_loader


def _deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# Create router
api_router = APIRouter()


# ============================================================================
# Pydantic Models for API Requests
# ============================================================================

class ConfigUpdateRequest(BaseModel):
    """Configuration update request (partial, merged into current)."""
    config: Dict[str, Any]


class SyncTriggerRequest(BaseModel):
    """Manual sync trigger request."""
    wait: bool = Field(default=False, description="Run in the request and return the result")


class ResolveRequest(BaseModel):
    """Conflict resolution directive."""
    path: str = Field(..., min_length=1)
    resolution: str = Field(..., description="keep-local, keep-cloud, keep-share or keep-all-renamed")


# ============================================================================
# Configuration Routes
# ============================================================================

@api_router.get("/config")
async def get_config():
    """Get current configuration."""
    orchestrator = get_orchestrator()
    return orchestrator.config.model_dump(mode="json")


@api_router.post("/config")
async def update_config(update: ConfigUpdateRequest, request: Request):
    """
    Update configuration.

    Accepts partial updates, validates the merged result, saves it, and
    applies it to the engine and the running scheduler.
    """
    orchestrator = get_orchestrator()
    merged = _deep_merge(orchestrator.config.model_dump(mode="json"), update.config)

    try:
        new_config = Config(**merged)
        if new_config.scheduling.enabled:
            build_cron_trigger(new_config.scheduling.schedule)
    except (ValidationError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid configuration: {e}"
        )

    try:
        orchestrator.reconfigure(new_config)
    except SyncInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.reconfigure(new_config)

    get_config_loader().save(new_config)
    logger.info("Configuration updated via API")
    return {
        "success": True,
        "message": "Configuration updated successfully"
    }


# ============================================================================
# Status Routes
# ============================================================================

@api_router.get("/status")
async def get_status():
    """Get sync status, last result and latest progress."""
    return get_orchestrator().get_status()


@api_router.get("/files")
async def list_files():
    """List known files with their last synced state."""
    files = await run_in_threadpool(get_orchestrator().list_files)
    return {"files": files, "total": len(files)}


@api_router.get("/progress/stream")
async def stream_progress(follow: bool = True):
    """
    Stream progress events using Server-Sent Events (SSE).

    Args:
        follow: Keep streaming across runs; if false, stop after a
            "completed" event
    """
    channel = get_orchestrator().progress

    async def event_generator():
        """Generate SSE events from the progress channel."""
        idle = 0.0
        while True:
            events = channel.drain()
            for event in events:
                yield f"data: {json.dumps(event.to_dict())}\n\n"
                if not follow and event.operation == ProgressOperation.COMPLETED:
                    return

            if events:
                idle = 0.0
            elif idle >= KEEPALIVE_SECONDS:
                yield ": keepalive\n\n"
                idle = 0.0

            await asyncio.sleep(POLL_SECONDS)
            idle += POLL_SECONDS

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream"
    )


# ============================================================================
# Control Routes
# ============================================================================

@api_router.post("/sync/trigger")
async def trigger_sync(request: Optional[SyncTriggerRequest] = None):
    """Manually trigger a sync run."""
    orchestrator = get_orchestrator()
    wait = request.wait if request else False
    logger.info(f"Manual sync triggered (wait={wait})")

    try:
        if wait:
            result = await run_in_threadpool(orchestrator.sync_now)
            return {"success": True, "message": "Sync finished", "result": result.to_dict()}
        orchestrator.trigger_sync()
    except SyncInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return {"success": True, "message": "Sync started"}


@api_router.post("/sync/cancel")
async def cancel_sync():
    """Cancel the running sync between files."""
    cancelled = get_orchestrator().cancel()
    return {
        "success": cancelled,
        "message": "Cancellation requested" if cancelled else "No sync running"
    }


@api_router.get("/sync/result")
async def get_last_result():
    """Get the summary of the last finished run."""
    result = get_orchestrator().last_result
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No sync has completed yet")
    return result.to_dict()


# ============================================================================
# Conflict Routes
# ============================================================================

@api_router.get("/conflicts")
async def list_conflicts():
    """List conflicts awaiting a resolution directive."""
    conflicts = await run_in_threadpool(get_orchestrator().list_conflicts)
    return {"conflicts": [c.to_dict() for c in conflicts], "total": len(conflicts)}


@api_router.post("/conflicts/resolve")
async def resolve_conflict(request: ResolveRequest):
    """Apply a resolution directive to one pending conflict."""
    try:
        resolution = ConflictResolution(request.resolution)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown resolution: {request.resolution}"
        )

    orchestrator = get_orchestrator()
    try:
        result = await run_in_threadpool(orchestrator.resolve_conflict, request.path, resolution)
    except ConflictNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SyncInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except (ResolutionError, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Conflict on {request.path} resolved with {resolution.value}")
    return {"success": True, "path": request.path, "resolution": resolution.value, "result": result.to_dict()}

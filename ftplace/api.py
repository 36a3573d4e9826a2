"""
ftplace — api.py
─────────────────────────────────────────────────────────────────
Control API — queue management for a running scheduler.

Endpoints this file provides:
  GET    /api/queue                  → items in selection order + positions
  POST   /api/queue                  → enqueue an art (by name or inline)
  PATCH  /api/queue/{id}/priority    → change priority (1 highest .. 5)
  POST   /api/queue/{id}/pause       → PENDING/ACTIVE → PAUSED
  POST   /api/queue/{id}/resume      → PAUSED → PENDING
  POST   /api/queue/{id}/cancel      → any non-terminal → CANCELLED
  POST   /api/queue/{id}/retry       → FAILED/CANCELLED → PENDING
  DELETE /api/queue/{id}             → drop a terminal item
  POST   /api/queue/pause            → queue-wide pause
  POST   /api/queue/resume           → queue-wide resume
  POST   /api/queue/cancel           → cancel every non-terminal item
  GET    /api/status                 → worker / charges / board / auth + events
  GET    /api/arts                   → art files available in ART_DIR
  PUT    /api/auth/tokens            → re-login with a fresh token pair
─────────────────────────────────────────────────────────────────
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ftplace.core.config import cfg
from ftplace.models.art import PixelArt, find_art, list_art_files
from ftplace.models.queue_item import QueueItem
from ftplace.queue_store import (
    InvalidPriorityError,
    InvalidTransitionError,
    QueueError,
    QueueItemAlreadyActiveError,
    QueueItemNotFoundError,
)
from ftplace.scheduler import Scheduler

logger = logging.getLogger("ftplace.api")

router = APIRouter(prefix="/api", tags=["queue"])


# ── Request / Response models ──────────────
class EnqueueRequest(BaseModel):
    art_name: Optional[str] = None          # file in ART_DIR
    art:      Optional[PixelArt] = None     # or an inline art
    anchor_x: int
    anchor_y: int
    priority: int = 3


class PriorityRequest(BaseModel):
    priority: int


class TokensRequest(BaseModel):
    access_token:  str = Field(min_length=1)
    refresh_token: Optional[str] = None
    base_url:      Optional[str] = None


class QueueItemResponse(BaseModel):
    id:             str
    name:           str
    anchor:         List[int]
    priority:       int
    status:         str
    pixels_placed:  int
    pixels_total:   int
    fail_reason:    Optional[str] = None
    created_at:     str
    started_at:     Optional[str] = None
    finished_at:    Optional[str] = None
    queue_position: Optional[int] = None


# ── Dependencies ───────────────────────────
def get_scheduler(request: Request) -> Scheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(503, "Scheduler not running")
    return scheduler


def _response(scheduler: Scheduler, item: QueueItem) -> QueueItemResponse:
    position = scheduler.store.position_of(item.id)
    return QueueItemResponse(
        **item.to_dict(),
        queue_position = position if position >= 0 else None,
    )


def _http_error(e: QueueError) -> HTTPException:
    if isinstance(e, QueueItemNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidPriorityError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, (InvalidTransitionError, QueueItemAlreadyActiveError)):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


# ─────────────────────────────────────────────
# Queue
# ─────────────────────────────────────────────
@router.get("/queue", response_model=List[QueueItemResponse])
async def list_queue(scheduler: Scheduler = Depends(get_scheduler)):
    """Stable snapshot in selection order (priority, then insertion)."""
    return [_response(scheduler, item) for item in scheduler.store.items()]


@router.post("/queue", response_model=QueueItemResponse, status_code=201)
async def enqueue(req: EnqueueRequest, scheduler: Scheduler = Depends(get_scheduler)):
    if req.art is not None:
        art = req.art
    elif req.art_name:
        art = find_art(cfg.ART_DIR, req.art_name)
        if art is None:
            raise HTTPException(404, f"Art '{req.art_name}' not found in {cfg.ART_DIR}.")
    else:
        raise HTTPException(422, "Provide either 'art_name' or an inline 'art'.")

    if not art.pattern:
        raise HTTPException(422, f"Art '{art.name}' has no pixels.")

    try:
        item = await scheduler.enqueue(art, (req.anchor_x, req.anchor_y), req.priority)
    except QueueError as e:
        raise _http_error(e)
    return _response(scheduler, item)


@router.post("/queue/pause")
async def pause_queue(scheduler: Scheduler = Depends(get_scheduler)):
    scheduler.worker.pause()
    return {"paused": True}


@router.post("/queue/resume")
async def resume_queue(scheduler: Scheduler = Depends(get_scheduler)):
    await scheduler.worker.resume()
    return {"paused": False}


@router.post("/queue/cancel")
async def cancel_queue(scheduler: Scheduler = Depends(get_scheduler)):
    cancelled = await scheduler.store.cancel_all()
    scheduler.status.info(f"🛑 Cancelled {cancelled} queue items")
    return {"cancelled": cancelled}


@router.patch("/queue/{item_id}/priority", response_model=QueueItemResponse)
async def set_priority(
    item_id:   str,
    req:       PriorityRequest,
    scheduler: Scheduler = Depends(get_scheduler),
):
    try:
        item = await scheduler.store.set_priority(item_id, req.priority)
    except QueueError as e:
        raise _http_error(e)
    return _response(scheduler, item)


@router.post("/queue/{item_id}/{action}", response_model=QueueItemResponse)
async def item_action(
    item_id:   str,
    action:    str,
    scheduler: Scheduler = Depends(get_scheduler),
):
    store = scheduler.store
    actions = {
        "pause":  store.pause,
        "resume": store.resume,
        "cancel": store.cancel,
        "retry":  store.retry,
    }
    if action not in actions:
        raise HTTPException(404, f"Unknown action '{action}'.")
    try:
        item = await actions[action](item_id)
    except QueueError as e:
        raise _http_error(e)
    scheduler.status.info(f"'{item.name}' → {item.status.value}")
    return _response(scheduler, item)


@router.delete("/queue/{item_id}", status_code=204)
async def remove_item(item_id: str, scheduler: Scheduler = Depends(get_scheduler)):
    try:
        await scheduler.store.remove(item_id)
    except QueueError as e:
        raise _http_error(e)


# ─────────────────────────────────────────────
# Status / arts / auth
# ─────────────────────────────────────────────
@router.get("/status")
async def status(
    limit:     int       = Query(50, ge=1, le=500),
    scheduler: Scheduler = Depends(get_scheduler),
):
    report = scheduler.status_report()
    report["events"] = [e.to_dict() for e in scheduler.status.recent(limit)]
    return report


@router.get("/arts")
async def list_arts():
    return [
        {
            "name":   art.name,
            "width":  art.width,
            "height": art.height,
            "pixels": len(art.pattern),
        }
        for art in list_art_files(cfg.ART_DIR)
    ]


@router.put("/auth/tokens")
async def set_tokens(req: TokensRequest, scheduler: Scheduler = Depends(get_scheduler)):
    state = scheduler.set_tokens(req.access_token, req.refresh_token, req.base_url)
    return {"ok": True, "base_url": state.base_url, "has_refresh_token": bool(state.refresh_token)}

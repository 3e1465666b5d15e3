"""Counter CRUD and delta routes. Every successful mutation is broadcast."""

import logging
import time
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from sync_counter.api.dependencies import get_broadcast_hub
from sync_counter.database.session import get_db
from sync_counter.services.broadcast import BroadcastHub, SyncEventType, build_event
from sync_counter.services.counter_store import counter_store, counter_to_dict
from sync_counter.services.image_service import image_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/counters", tags=["counters"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class CounterCreateRequest(BaseModel):
    name: str
    value: int = 0
    daily_goal: int | None = Field(None, alias="dailyGoal", ge=0)
    id: str | None = None

    class Config:
        populate_by_name = True


class CounterUpdateRequest(BaseModel):
    name: str
    value: int | None = None
    daily_goal: int | None = Field(None, alias="dailyGoal", ge=0)

    class Config:
        populate_by_name = True


class IncrementRequest(BaseModel):
    user: str | None = None
    day: str | None = None  # YYYY-MM-DD the change was made on


class AdjustRequest(BaseModel):
    delta: int
    user: str | None = None
    day: str | None = None


class CounterEnvelope(BaseModel):
    counter: Dict[str, Any]
    timestamp: int


class CounterListResponse(BaseModel):
    counters: List[Dict[str, Any]]
    timestamp: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now_ms() -> int:
    return int(time.time() * 1000)


def _require_name(name: str) -> None:
    if not name or not name.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Counter name is required")


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Counter not found")


def _respond_and_broadcast(hub: BroadcastHub, event_type: SyncEventType, counter) -> Dict[str, Any]:
    payload = counter_to_dict(counter)
    hub.publish(build_event(event_type, counter=payload))
    return {"counter": payload, "timestamp": _now_ms()}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("", response_model=CounterListResponse)
async def list_counters(db: Session = Depends(get_db)):
    counters = await run_in_threadpool(counter_store.list, db)
    return {"counters": [counter_to_dict(c) for c in counters], "timestamp": _now_ms()}


@router.post("", response_model=CounterEnvelope, status_code=status.HTTP_201_CREATED)
async def create_counter(
    body: CounterCreateRequest,
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    """Create a counter. A client-supplied id that already exists updates it instead."""
    _require_name(body.name)
    counter, created = await run_in_threadpool(counter_store.upsert, db, body.model_dump())
    event_type = SyncEventType.COUNTER_CREATED if created else SyncEventType.COUNTER_UPDATED
    return _respond_and_broadcast(hub, event_type, counter)


@router.get("/{counter_id}", response_model=CounterEnvelope)
async def get_counter(counter_id: str, db: Session = Depends(get_db)):
    counter = await run_in_threadpool(counter_store.get_by_id, db, counter_id)
    if not counter:
        raise _not_found()
    return {"counter": counter_to_dict(counter), "timestamp": _now_ms()}


@router.put("/{counter_id}", response_model=CounterEnvelope)
async def update_counter(
    counter_id: str,
    body: CounterUpdateRequest,
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    _require_name(body.name)
    counter = await run_in_threadpool(counter_store.update, db, counter_id, body.model_dump())
    if not counter:
        raise _not_found()
    return _respond_and_broadcast(hub, SyncEventType.COUNTER_UPDATED, counter)


@router.delete("/{counter_id}", response_model=CounterEnvelope)
async def delete_counter(
    counter_id: str,
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    counter = await run_in_threadpool(counter_store.delete, db, counter_id)
    if not counter:
        raise _not_found()
    if counter.image_key:
        await run_in_threadpool(image_service.delete, counter.image_key)
    return _respond_and_broadcast(hub, SyncEventType.COUNTER_DELETED, counter)


@router.post("/{counter_id}/increment", response_model=CounterEnvelope)
async def increment_counter(
    counter_id: str,
    body: IncrementRequest | None = None,
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    body = body or IncrementRequest()
    counter = await run_in_threadpool(counter_store.apply_delta, db, counter_id, 1, body.user, body.day)
    if not counter:
        raise _not_found()
    return _respond_and_broadcast(hub, SyncEventType.COUNTER_INCREMENTED, counter)


@router.post("/{counter_id}/decrement", response_model=CounterEnvelope)
async def decrement_counter(
    counter_id: str,
    body: IncrementRequest | None = None,
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    body = body or IncrementRequest()
    counter = await run_in_threadpool(counter_store.apply_delta, db, counter_id, -1, body.user, body.day)
    if not counter:
        raise _not_found()
    return _respond_and_broadcast(hub, SyncEventType.COUNTER_DECREMENTED, counter)


@router.post("/{counter_id}/adjust", response_model=CounterEnvelope)
async def adjust_counter(
    counter_id: str,
    body: AdjustRequest,
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    """Apply a net delta in one call (replay of coalesced offline changes)."""
    if body.delta == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Delta must be non-zero")
    counter = await run_in_threadpool(
        counter_store.apply_delta, db, counter_id, body.delta, body.user, body.day,
    )
    if not counter:
        raise _not_found()
    logger.info("Applied delta %+d to %s", body.delta, counter_id)
    event_type = SyncEventType.COUNTER_INCREMENTED if body.delta > 0 else SyncEventType.COUNTER_DECREMENTED
    return _respond_and_broadcast(hub, event_type, counter)


@router.post("/{counter_id}/reset", response_model=CounterEnvelope)
async def reset_counter(
    counter_id: str,
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    counter = await run_in_threadpool(counter_store.reset, db, counter_id)
    if not counter:
        raise _not_found()
    return _respond_and_broadcast(hub, SyncEventType.COUNTER_UPDATED, counter)

"""Per-counter image upload, lookup and removal."""

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from sync_counter.api.dependencies import get_broadcast_hub
from sync_counter.database.session import get_db
from sync_counter.services.broadcast import BroadcastHub, SyncEventType, build_event
from sync_counter.services.counter_store import counter_store, counter_to_dict
from sync_counter.services.image_service import image_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/counters/{counter_id}/image", tags=["images"])


def _load_counter(db: Session, counter_id: str):
    counter = counter_store.get_by_id(db, counter_id)
    if not counter:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Counter not found")
    return counter


@router.get("")
async def get_image(counter_id: str, db: Session = Depends(get_db)):
    counter = await run_in_threadpool(_load_counter, db, counter_id)
    return {"imageUrl": counter.image_url}


@router.put("")
async def put_image(
    counter_id: str,
    image: UploadFile = File(...),
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    """Replace the counter's image. The previous image is deleted from storage."""
    content_type = image.content_type or ""
    if not content_type.startswith("image/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Image file is required")
    data = await image.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Image file is empty")
    if len(data) > image_service.max_bytes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Image file is too large")

    counter = await run_in_threadpool(_load_counter, db, counter_id)
    previous_key = counter.image_key

    key, url = await run_in_threadpool(image_service.upload, counter_id, data, content_type)
    counter = await run_in_threadpool(counter_store.set_image, db, counter, url, key)
    if previous_key and previous_key != key:
        await run_in_threadpool(image_service.delete, previous_key)

    payload = counter_to_dict(counter)
    hub.publish(build_event(SyncEventType.COUNTER_UPDATED, counter=payload))
    return {"imageUrl": url, "counter": payload}


@router.delete("")
async def delete_image(
    counter_id: str,
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    counter = await run_in_threadpool(_load_counter, db, counter_id)
    if counter.image_key or counter.image_url:
        key = counter.image_key
        counter = await run_in_threadpool(counter_store.set_image, db, counter, None, None)
        await run_in_threadpool(image_service.delete, key)
        hub.publish(build_event(SyncEventType.COUNTER_UPDATED, counter=counter_to_dict(counter)))
    return {"success": True}

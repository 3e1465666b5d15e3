"""Offline action queue: durable record of mutations the server has not confirmed.

Queueing rules:
  - increment/decrement on a counter coalesce into one net delta entry, as
    long as that entry is the newest queued change for the counter and is
    not the one currently being replayed
  - a net delta of zero removes the entry
  - create/update/delete are appended as discrete ordered entries

Replay sends entries strictly FIFO, one at a time. A transient failure
stops the pass, leaves the rest queued and is reported via ``on_failed``.
A not-found or invalid-input
answer drops that entry (reported via ``on_dropped``) and the pass goes on.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from sync_counter.client.api import CounterStoreClient
from sync_counter.client.exceptions import (
    CounterNotFoundError,
    InvalidInputError,
    SyncCounterError,
)
from sync_counter.client.storage import PendingChangeRecord, open_queue_storage
from sync_counter.core.config import settings

logger = logging.getLogger(__name__)


class PendingOperation(str, Enum):
    INCREMENT = "increment"
    DECREMENT = "decrement"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def is_delta(self) -> bool:
        return self in (PendingOperation.INCREMENT, PendingOperation.DECREMENT)


@dataclass
class PendingChange:
    counter_id: str
    operation: PendingOperation
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))
    id: Optional[int] = None

    @property
    def delta(self) -> int:
        return int(self.payload.get("delta", 0))

    @classmethod
    def from_record(cls, record: PendingChangeRecord) -> "PendingChange":
        return cls(
            id=record.id,
            counter_id=record.counter_id,
            operation=PendingOperation(record.operation),
            payload=dict(record.payload or {}),
            created_at=record.created_at,
        )


@dataclass
class ReplayResult:
    applied: int = 0
    dropped: List[PendingChange] = field(default_factory=list)
    remaining: int = 0
    completed: bool = False
    skipped: bool = False


DroppedHandler = Callable[[PendingChange, Exception], None]
FailedHandler = Callable[[PendingChange, Exception], None]
SyncedHandler = Callable[[], Awaitable[None]]


class OfflineActionQueue:
    def __init__(
        self,
        client: CounterStoreClient,
        url: str | None = None,
        session_factory=None,
        on_dropped: Optional[DroppedHandler] = None,
        on_synced: Optional[SyncedHandler] = None,
        on_failed: Optional[FailedHandler] = None,
    ):
        self.client = client
        self._session_factory = session_factory or open_queue_storage(url or settings.CLIENT_QUEUE_URL)
        self.on_dropped = on_dropped
        self.on_synced = on_synced
        # called when a transient failure stops a replay pass
        self.on_failed = on_failed
        self._replaying = False
        self._in_flight_id: Optional[int] = None

    @property
    def is_replaying(self) -> bool:
        return self._replaying

    # -----------------------------------------------------------------------
    # Enqueue
    # -----------------------------------------------------------------------

    def enqueue(self, change: PendingChange) -> Optional[PendingChange]:
        """Record ``change`` durably. Returns the stored entry, None if nothing is queued."""
        try:
            with self._session_factory() as db:
                if change.operation.is_delta:
                    return self._enqueue_delta(db, change)
                record = self._add(db, change)
                db.commit()
                logger.info("Queued %s for %s", change.operation.value, change.counter_id)
                return PendingChange.from_record(record)
        except SQLAlchemyError:
            logger.exception("Could not queue %s for %s", change.operation.value, change.counter_id)
            return None

    def enqueue_delta(self, counter_id: str, delta: int, user: str | None = None,
                      day: str | None = None) -> Optional[PendingChange]:
        operation = PendingOperation.INCREMENT if delta > 0 else PendingOperation.DECREMENT
        return self.enqueue(PendingChange(counter_id, operation, {"delta": delta, "user": user, "day": day}))

    def enqueue_create(self, fields: Dict[str, Any]) -> Optional[PendingChange]:
        return self.enqueue(PendingChange(fields["id"], PendingOperation.CREATE, dict(fields)))

    def enqueue_update(self, counter_id: str, fields: Dict[str, Any]) -> Optional[PendingChange]:
        return self.enqueue(PendingChange(counter_id, PendingOperation.UPDATE, dict(fields)))

    def enqueue_delete(self, counter_id: str) -> Optional[PendingChange]:
        return self.enqueue(PendingChange(counter_id, PendingOperation.DELETE))

    def _enqueue_delta(self, db, change: PendingChange) -> Optional[PendingChange]:
        latest = (
            db.query(PendingChangeRecord)
            .filter(PendingChangeRecord.counter_id == change.counter_id)
            .order_by(PendingChangeRecord.id.desc())
            .first()
        )
        if (
            latest is None
            or not PendingOperation(latest.operation).is_delta
            or latest.id == self._in_flight_id
        ):
            if change.delta == 0:
                return None
            record = self._add(db, change)
            db.commit()
            logger.info("Queued delta %+d for %s", change.delta, change.counter_id)
            return PendingChange.from_record(record)

        net = int(latest.payload.get("delta", 0)) + change.delta
        if net == 0:
            db.delete(latest)
            db.commit()
            logger.info("Queued deltas for %s cancelled out", change.counter_id)
            return None

        payload = dict(latest.payload)
        payload["delta"] = net
        latest.payload = payload
        latest.operation = (PendingOperation.INCREMENT if net > 0 else PendingOperation.DECREMENT).value
        db.commit()
        logger.info("Coalesced delta for %s, net %+d", change.counter_id, net)
        return PendingChange.from_record(latest)

    def _add(self, db, change: PendingChange) -> PendingChangeRecord:
        record = PendingChangeRecord(
            counter_id=change.counter_id,
            operation=change.operation.value,
            payload=change.payload,
            created_at=change.created_at,
        )
        db.add(record)
        db.flush()
        return record

    # -----------------------------------------------------------------------
    # Inspection
    # -----------------------------------------------------------------------

    def pending(self) -> List[PendingChange]:
        try:
            with self._session_factory() as db:
                records = db.query(PendingChangeRecord).order_by(PendingChangeRecord.id.asc()).all()
                return [PendingChange.from_record(r) for r in records]
        except SQLAlchemyError:
            logger.exception("Could not read pending changes")
            return []

    def count_pending(self) -> int:
        try:
            with self._session_factory() as db:
                return db.query(PendingChangeRecord).count()
        except SQLAlchemyError:
            logger.exception("Could not count pending changes")
            return 0

    def clear(self) -> None:
        try:
            with self._session_factory() as db:
                db.query(PendingChangeRecord).delete()
                db.commit()
        except SQLAlchemyError:
            logger.exception("Could not clear pending changes")

    # -----------------------------------------------------------------------
    # Replay
    # -----------------------------------------------------------------------

    async def replay(self) -> ReplayResult:
        if self._replaying:
            logger.info("Replay already in progress, skipping")
            return ReplayResult(skipped=True, remaining=self.count_pending())

        self._replaying = True
        result = ReplayResult()
        try:
            while True:
                try:
                    change = self._peek()
                except SQLAlchemyError:
                    logger.exception("Could not read next pending change, stopping replay")
                    break
                if change is None:
                    result.completed = True
                    break

                self._in_flight_id = change.id
                try:
                    await self._send(change)
                except (CounterNotFoundError, InvalidInputError) as e:
                    logger.warning(
                        "Dropping queued %s for %s: %s", change.operation.value, change.counter_id, e,
                    )
                    result.dropped.append(change)
                    if self.on_dropped is not None:
                        self.on_dropped(change, e)
                    if not self._remove(change):
                        break
                    continue
                except SyncCounterError as e:
                    logger.info(
                        "Replay stopped at %s for %s: %s", change.operation.value, change.counter_id, e,
                    )
                    if self.on_failed is not None:
                        self.on_failed(change, e)
                    break
                finally:
                    self._in_flight_id = None

                result.applied += 1
                if not self._remove(change):
                    break
        finally:
            self._replaying = False

        result.remaining = self.count_pending()
        logger.info(
            "Replay finished: %s applied, %s dropped, %s remaining",
            result.applied, len(result.dropped), result.remaining,
        )
        if result.completed and (result.applied or result.dropped) and self.on_synced is not None:
            await self.on_synced()
        return result

    def _peek(self) -> Optional[PendingChange]:
        with self._session_factory() as db:
            record = db.query(PendingChangeRecord).order_by(PendingChangeRecord.id.asc()).first()
            return PendingChange.from_record(record) if record else None

    def _remove(self, change: PendingChange) -> bool:
        try:
            with self._session_factory() as db:
                db.query(PendingChangeRecord).filter(PendingChangeRecord.id == change.id).delete()
                db.commit()
        except SQLAlchemyError:
            logger.exception("Could not remove replayed change %s", change.id)
            return False
        return True

    async def _send(self, change: PendingChange) -> None:
        payload = change.payload
        if change.operation.is_delta:
            await self.client.adjust(change.counter_id, change.delta, payload.get("user"), payload.get("day"))
        elif change.operation is PendingOperation.CREATE:
            await self.client.create(payload)
        elif change.operation is PendingOperation.UPDATE:
            await self.client.update(change.counter_id, payload)
        elif change.operation is PendingOperation.DELETE:
            await self.client.delete(change.counter_id)

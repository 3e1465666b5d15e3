"""Counter persistence: list, lookup, delta application, upsert, progress tracking.

Progress rules:
  - every delta is tallied per user in ``users`` (running total) and in
    ``history[<YYYY-MM-DD>]["users"]`` for the day it happened on
  - tallies never go below zero, the counter value itself is unbounded
  - ``history[day]["total"]`` is the sum of that day's user tallies
  - ``daily_count`` mirrors today's total (today in DAY_TIMEZONE)
"""

import copy
import logging
import time
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from sync_counter.core.config import settings
from sync_counter.models.counter import Counter

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "Anonymous"

UPDATABLE_FIELDS = ("name", "value", "daily_goal")


def now_ms() -> int:
    return int(time.time() * 1000)


def new_counter_id() -> str:
    """Random id, unique across clients and across creates in the same millisecond."""
    return f"counter-{uuid.uuid4().hex}"


def normalize_user_name(name: str | None) -> str | None:
    """'prAbH' -> 'Prabh'. Blank names normalise to None."""
    if not name or not name.strip():
        return None
    name = name.strip()
    return name[:1].upper() + name[1:].lower()


def today_key(tz_name: str | None = None) -> str:
    tz = ZoneInfo(tz_name or settings.DAY_TIMEZONE)
    return datetime.now(tz).date().isoformat()


def normalize_day(value: str | None, tz_name: str | None = None) -> str:
    """Return YYYY-MM-DD for a date or ISO timestamp string, today on garbage."""
    if not value:
        return today_key(tz_name)
    try:
        if len(value) == 10:
            return date.fromisoformat(value).isoformat()
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return today_key(tz_name)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(ZoneInfo(tz_name or settings.DAY_TIMEZONE))
    return parsed.date().isoformat()


def counter_to_dict(counter: Counter) -> Dict[str, Any]:
    """Wire representation shared by REST responses and broadcast events."""
    return {
        "id": counter.id,
        "name": counter.name,
        "value": counter.value,
        "dailyGoal": counter.daily_goal or 0,
        "dailyCount": counter.daily_count or 0,
        "users": dict(counter.users or {}),
        "history": copy.deepcopy(counter.history or {}),
        "imageUrl": counter.image_url,
        "lastUpdated": counter.last_updated,
    }


class CounterStore:
    def __init__(self, tz_name: str | None = None):
        self.tz_name = tz_name or settings.DAY_TIMEZONE

    def list(self, db: Session) -> List[Counter]:
        return db.query(Counter).order_by(Counter.name.asc()).all()

    def get_by_id(self, db: Session, counter_id: str) -> Optional[Counter]:
        return db.query(Counter).filter(Counter.id == counter_id).first()

    def upsert(self, db: Session, fields: Dict[str, Any]) -> tuple[Counter, bool]:
        """Create the counter, or update it when ``fields["id"]`` already exists.

        Returns ``(counter, created)``.
        """
        counter_id = fields.get("id")
        existing = self.get_by_id(db, counter_id) if counter_id else None
        if existing:
            return self._apply_fields(db, existing, fields), False

        counter = Counter(
            id=counter_id or new_counter_id(),
            name=fields["name"].strip(),
            value=int(fields.get("value") or 0),
            daily_goal=max(0, int(fields.get("daily_goal") or 0)),
            daily_count=0,
            users={},
            history={},
            last_updated=now_ms(),
        )
        db.add(counter)
        db.commit()
        db.refresh(counter)
        logger.info("Created counter %s (%s)", counter.id, counter.name)
        return counter, True

    def update(self, db: Session, counter_id: str, fields: Dict[str, Any]) -> Optional[Counter]:
        counter = self.get_by_id(db, counter_id)
        if not counter:
            return None
        return self._apply_fields(db, counter, fields)

    def apply_delta(
        self,
        db: Session,
        counter_id: str,
        delta: int,
        user: str | None = None,
        day: str | None = None,
    ) -> Optional[Counter]:
        counter = self.get_by_id(db, counter_id)
        if not counter:
            return None

        counter.value = (counter.value or 0) + delta
        self._record_progress(counter, delta, normalize_user_name(user) or ANONYMOUS_USER,
                              normalize_day(day, self.tz_name))
        counter.last_updated = now_ms()
        db.commit()
        db.refresh(counter)
        return counter

    def reset(self, db: Session, counter_id: str) -> Optional[Counter]:
        return self.update(db, counter_id, {"value": 0})

    def set_image(self, db: Session, counter: Counter, url: str | None, key: str | None) -> Counter:
        counter.image_url = url
        counter.image_key = key
        counter.last_updated = now_ms()
        db.commit()
        db.refresh(counter)
        return counter

    def delete(self, db: Session, counter_id: str) -> Optional[Counter]:
        counter = self.get_by_id(db, counter_id)
        if not counter:
            return None
        db.delete(counter)
        db.commit()
        logger.info("Deleted counter %s", counter_id)
        return counter

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _apply_fields(self, db: Session, counter: Counter, fields: Dict[str, Any]) -> Counter:
        for key in UPDATABLE_FIELDS:
            if fields.get(key) is None:
                continue
            value = fields[key]
            if key == "name":
                value = value.strip()
            elif key == "daily_goal":
                value = max(0, int(value))
            else:
                value = int(value)
            setattr(counter, key, value)
        counter.last_updated = now_ms()
        db.commit()
        db.refresh(counter)
        return counter

    def _record_progress(self, counter: Counter, delta: int, user: str, day: str) -> None:
        users = dict(counter.users or {})
        history = copy.deepcopy(counter.history or {})

        users[user] = max(0, users.get(user, 0) + delta)

        entry = history.setdefault(day, {"users": {}, "total": 0})
        entry["day"] = date.fromisoformat(day).strftime("%A")
        day_users = entry.setdefault("users", {})
        day_users[user] = max(0, day_users.get(user, 0) + delta)
        entry["total"] = sum(day_users.values())

        # reassign so SQLAlchemy sees the JSON change
        counter.users = users
        counter.history = history
        counter.daily_count = history.get(today_key(self.tz_name), {}).get("total", 0)


counter_store = CounterStore()

"""Client-side counter state: optimistic edits reconciled with server copies."""

from __future__ import annotations

import copy
import logging
import time
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from sync_counter.services.counter_store import (
    ANONYMOUS_USER,
    new_counter_id,
    normalize_user_name,
    today_key,
)

logger = logging.getLogger(__name__)

Counter = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


class CounterState:
    """Ordered map of counter id -> wire-format counter dict.

    Server copies win over local copies unless the local copy is strictly
    newer (``lastUpdated``). Equal timestamps prefer the server copy, so the
    broadcast echo of a change this client just made is a no-op.
    """

    def __init__(self, counters: Iterable[Counter] = ()):
        self._counters: Dict[str, Counter] = {}
        self.replace_all(counters)

    def __len__(self) -> int:
        return len(self._counters)

    def __contains__(self, counter_id: str) -> bool:
        return counter_id in self._counters

    def get(self, counter_id: str) -> Optional[Counter]:
        return self._counters.get(counter_id)

    def all(self) -> List[Counter]:
        return list(self._counters.values())

    def replace_all(self, counters: Iterable[Counter]) -> None:
        """Adopt the server's canonical view wholesale (resync)."""
        self._counters = {c["id"]: copy.deepcopy(c) for c in counters}

    def apply_initial(self, counters: List[Counter], has_pending: bool = False) -> None:
        """Handle an ``initial`` snapshot.

        With nothing queued the snapshot replaces local state; with changes
        still queued it is merged so optimistic edits are not lost.
        """
        if has_pending:
            self.merge_server(counters)
        else:
            self.replace_all(counters)

    def upsert(self, counter: Counter) -> Counter:
        current = self._counters.get(counter["id"])
        if current is not None and (current.get("lastUpdated") or 0) > (counter.get("lastUpdated") or 0):
            logger.debug("Ignoring stale copy of %s", counter["id"])
            return current
        self._counters[counter["id"]] = copy.deepcopy(counter)
        return self._counters[counter["id"]]

    def remove(self, counter_id: str) -> Optional[Counter]:
        return self._counters.pop(counter_id, None)

    def merge_server(self, server_counters: List[Counter]) -> None:
        """Newest-wins merge per counter; local-only counters are kept."""
        merged: Dict[str, Counter] = {}
        server_by_id = {c["id"]: c for c in server_counters}
        for counter_id, local in self._counters.items():
            server = server_by_id.get(counter_id)
            if server is None:
                merged[counter_id] = local
            elif (local.get("lastUpdated") or 0) > (server.get("lastUpdated") or 0):
                merged[counter_id] = local
            else:
                merged[counter_id] = copy.deepcopy(server)
        for counter_id, server in server_by_id.items():
            if counter_id not in merged:
                merged[counter_id] = copy.deepcopy(server)
        self._counters = merged

    def add_local(self, fields: Dict[str, Any]) -> Counter:
        counter = {
            "id": fields.get("id") or new_counter_id(),
            "name": fields["name"].strip(),
            "value": int(fields.get("value") or 0),
            "dailyGoal": max(0, int(fields.get("dailyGoal") or 0)),
            "dailyCount": 0,
            "users": {},
            "history": {},
            "imageUrl": None,
            "lastUpdated": _now_ms(),
        }
        self._counters[counter["id"]] = counter
        return counter

    def update_local(self, counter_id: str, fields: Dict[str, Any]) -> Optional[Counter]:
        counter = self._counters.get(counter_id)
        if counter is None:
            return None
        for key in ("name", "value", "dailyGoal"):
            if fields.get(key) is not None:
                counter[key] = fields[key].strip() if key == "name" else int(fields[key])
        counter["lastUpdated"] = _now_ms()
        return counter

    def apply_local_delta(
        self, counter_id: str, delta: int, user: str | None = None, day: str | None = None,
    ) -> Optional[Counter]:
        """Optimistically apply ``delta`` with the same progress rules as the server."""
        counter = self._counters.get(counter_id)
        if counter is None:
            return None
        user = normalize_user_name(user) or ANONYMOUS_USER
        day = day or today_key()

        counter["value"] = counter.get("value", 0) + delta
        users = counter.setdefault("users", {})
        users[user] = max(0, users.get(user, 0) + delta)

        entry = counter.setdefault("history", {}).setdefault(day, {"users": {}, "total": 0})
        entry["day"] = date.fromisoformat(day).strftime("%A")
        entry["users"][user] = max(0, entry["users"].get(user, 0) + delta)
        entry["total"] = sum(entry["users"].values())

        counter["dailyCount"] = counter["history"].get(today_key(), {}).get("total", 0)
        counter["lastUpdated"] = _now_ms()
        return counter

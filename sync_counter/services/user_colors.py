"""Per-user color assignments (username -> #RRGGBB)."""

import logging
import re
from typing import Dict, Optional

from sqlalchemy.orm import Session

from sync_counter.models.user_color import UserColor
from sync_counter.services.counter_store import normalize_user_name, now_ms

logger = logging.getLogger(__name__)

COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


class ColorTakenError(Exception):
    def __init__(self, color: str, owner: str):
        super().__init__(f"Color {color} is already used by {owner}")
        self.color = color
        self.owner = owner


def is_valid_color(color: str) -> bool:
    return bool(color) and bool(COLOR_PATTERN.match(color))


class UserColorService:
    def get(self, db: Session, username: str) -> Optional[str]:
        row = db.query(UserColor).filter(UserColor.username == normalize_user_name(username)).first()
        return row.color if row else None

    def get_all(self, db: Session) -> Dict[str, str]:
        return {row.username: row.color for row in db.query(UserColor).order_by(UserColor.username).all()}

    def set(self, db: Session, username: str, color: str) -> UserColor:
        """Assign ``color``; raises ColorTakenError if another user holds it."""
        username = normalize_user_name(username)
        color = color.upper()
        owner = db.query(UserColor).filter(UserColor.color == color).first()
        if owner and owner.username != username:
            raise ColorTakenError(color, owner.username)

        row = db.query(UserColor).filter(UserColor.username == username).first()
        if row:
            row.color = color
            row.last_updated = now_ms()
        else:
            row = UserColor(username=username, color=color, last_updated=now_ms())
            db.add(row)
        db.commit()
        db.refresh(row)
        logger.info("Assigned color %s to %s", color, username)
        return row

    def delete(self, db: Session, username: str) -> bool:
        row = db.query(UserColor).filter(UserColor.username == normalize_user_name(username)).first()
        if not row:
            return False
        db.delete(row)
        db.commit()
        return True


user_color_service = UserColorService()

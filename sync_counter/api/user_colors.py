"""User color CRUD."""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from sync_counter.database.session import get_db
from sync_counter.services.counter_store import normalize_user_name
from sync_counter.services.user_colors import ColorTakenError, is_valid_color, user_color_service

router = APIRouter(prefix="/user-colors", tags=["user-colors"])


class UserColorRequest(BaseModel):
    color: str


@router.get("")
def list_user_colors(db: Session = Depends(get_db)):
    return {"userColors": user_color_service.get_all(db)}


@router.get("/{username}")
def get_user_color(username: str, db: Session = Depends(get_db)):
    color = user_color_service.get(db, username)
    if color is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User color not found")
    return {"username": normalize_user_name(username), "color": color}


@router.put("/{username}")
def set_user_color(username: str, body: UserColorRequest, db: Session = Depends(get_db)):
    if not normalize_user_name(username):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username is required")
    if not is_valid_color(body.color):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid color format. Must be a hex color like #FF0000",
        )
    try:
        row = user_color_service.set(db, username, body.color)
    except ColorTakenError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return {"username": row.username, "color": row.color, "success": True}


@router.delete("/{username}")
def delete_user_color(username: str, db: Session = Depends(get_db)):
    if not user_color_service.delete(db, username):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User color not found")
    return {"username": normalize_user_name(username), "success": True}

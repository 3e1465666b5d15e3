"""SQLAlchemy models for the shared counter service."""

from .counter import Counter
from .user_color import UserColor

__all__ = [
    "Counter",
    "UserColor",
]

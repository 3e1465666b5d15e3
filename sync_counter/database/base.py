from typing import Any, Optional

from sqlalchemy import JSON, Dialect
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql.type_api import TypeEngine
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


class JSONDocument(TypeDecorator):
    """JSON column stored as JSONB on PostgreSQL and plain JSON elsewhere.

    Values are always dicts; NULL reads back as an empty dict.
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Optional[Any], dialect: Dialect) -> Any:
        if value is None:
            return {}
        return dict(value)

    def process_result_value(self, value: Optional[Any], dialect: Dialect) -> dict:
        if value is None:
            return {}
        return value

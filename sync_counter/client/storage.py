"""Local SQLite storage for the offline action queue."""

from sqlalchemy import BigInteger, Column, Integer, String
from sqlalchemy.orm import declarative_base

from sync_counter.database.base import JSONDocument
from sync_counter.database.engine import make_engine, make_sessionmaker

ClientBase = declarative_base()


class PendingChangeRecord(ClientBase):
    __tablename__ = "pending_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)  # enqueue order
    counter_id = Column(String, nullable=False, index=True)
    operation = Column(String, nullable=False)  # increment, decrement, create, update, delete
    payload = Column(JSONDocument, nullable=False, default=dict)
    created_at = Column(BigInteger, nullable=False)  # epoch millis


def open_queue_storage(url: str):
    """Create the queue table if needed and return a session factory."""
    engine = make_engine(url)
    ClientBase.metadata.create_all(bind=engine)
    return make_sessionmaker(engine)

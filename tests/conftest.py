import os

# Set *before* any project imports so the module-level engine is in-memory
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"

import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

import sync_counter.models  # noqa: F401
from sync_counter.api.dependencies import get_broadcast_hub, get_session_factory
from sync_counter.database.base import Base
from sync_counter.database.engine import make_engine, make_sessionmaker
from sync_counter.database.session import get_db
from sync_counter.services.broadcast import BroadcastHub, ConnectionClosed
from sync_counter.services.image_service import image_service


class RecordingConnection:
    """Hub connection that keeps every message it is sent."""

    def __init__(self, name: str = "recorder", fail: bool = False):
        self.id = name
        self.fail = fail
        self.closed = False
        self.messages = []

    def send(self, message: str) -> None:
        if self.fail:
            raise ConnectionClosed(self.id)
        self.messages.append(json.loads(message))

    def close(self) -> None:
        self.closed = True

    @property
    def types(self):
        return [m["type"] for m in self.messages]


@pytest.fixture
def db_engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_sessionmaker(db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def hub():
    return BroadcastHub()


@pytest.fixture
def recorder(hub):
    connection = RecordingConnection()
    hub.subscribe(connection)
    return connection


@pytest.fixture
def app(session_factory, hub):
    from main import app as fastapi_app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_session_factory] = lambda: session_factory
    fastapi_app.dependency_overrides[get_broadcast_hub] = lambda: hub
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    with patch.object(image_service, "ensure_bucket"), TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def queue_url(tmp_path):
    return f"sqlite:///{tmp_path / 'offline_queue.db'}"


def make_counter_payload(counter_id="c1", value=0, last_updated=1000, **extra):
    """Wire-format counter as the server sends it."""
    counter = {
        "id": counter_id,
        "name": extra.pop("name", f"Counter {counter_id}"),
        "value": value,
        "dailyGoal": 0,
        "dailyCount": 0,
        "users": {},
        "history": {},
        "imageUrl": None,
        "lastUpdated": last_updated,
    }
    counter.update(extra)
    return counter

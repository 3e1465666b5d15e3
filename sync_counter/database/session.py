import logging

from sync_counter.database.base import Base
from sync_counter.database.engine import SessionLocal, engine

logger = logging.getLogger(__name__)


def get_db():
    """One synchronous session per request; routes use it from the threadpool."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create the counter tables if missing (dev bootstrap, Alembic owns production)."""
    import sync_counter.models  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info("Counter schema ready on %s", bind.url.render_as_string(hide_password=True))

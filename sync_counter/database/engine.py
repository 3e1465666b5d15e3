from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from sync_counter.core.config import settings

load_dotenv()


def normalize_database_url(url: str) -> str:
    """Force the psycopg2 driver for PostgreSQL URLs."""
    if not url:
        raise ValueError("DATABASE_URL environment variable is not set.")

    if url.startswith("postgresql+asyncpg://"):
        url = url.replace("postgresql+asyncpg://", "postgresql+psycopg2://")
    elif url.startswith("postgresql://") and "psycopg2" not in url and "asyncpg" not in url:
        url = url.replace("postgresql://", "postgresql+psycopg2://")
    return url


def make_engine(url: str, **kwargs):
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_timeout", 30)
        kwargs.setdefault("pool_recycle", 3600)
        kwargs.setdefault("connect_args", {"connect_timeout": 10})
    return create_engine(url, **kwargs)


def make_sessionmaker(bind):
    return sessionmaker(autocommit=False, autoflush=False, bind=bind, expire_on_commit=False)


DATABASE_URL = normalize_database_url(settings.DATABASE_URL)

engine = make_engine(DATABASE_URL)

SessionLocal = make_sessionmaker(engine)

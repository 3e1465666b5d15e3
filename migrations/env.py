import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

load_dotenv()

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sync_counter.database.base import Base, JSONDocument
from sync_counter.database.engine import normalize_database_url
from sync_counter.models import *  # noqa: F401, F403

config = context.config


def render_item(type_, obj, autogen_context):
    """Render JSONDocument as JSONDocument() instead of the full module path."""
    if type_ == "type" and isinstance(obj, JSONDocument):
        autogen_context.imports.add("from sync_counter.database.base import JSONDocument")
        return "JSONDocument()"
    return False

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Server tables only; the client's offline queue lives in its own SQLite file.
target_metadata = Base.metadata


def get_url():
    url = os.getenv("DATABASE_URL", config.get_main_option("sqlalchemy.url"))
    if not url:
        raise ValueError("DATABASE_URL environment variable is not set.")
    return normalize_database_url(url)


def run_migrations_offline() -> None:
    url = get_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_item=render_item,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_url()
    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_item=render_item,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

from logging.config import fileConfig
import os, sys

# Ensure 'booking_engine/' is importable when running 'alembic ...' from project root
sys.path.append(os.getcwd())

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import Connection

from booking_engine.core.config import settings
from booking_engine.db.session import Base
import booking_engine.db.base  # noqa: F401  registers every model on Base.metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Created by raw SQL in the migrations; not declared on the models
UNMANAGED_CONSTRAINTS = {"ex_appointments_no_overlap"}


def database_url() -> str:
    """`alembic -x db_url=...` beats settings (handy for one-off targets)."""
    return context.get_x_argument(as_dictionary=True).get("db_url") or settings.sync_db_uri


def include_object(obj, name, type_, reflected, compare_to):
    return not (type_ == "constraint" and name in UNMANAGED_CONSTRAINTS)


def run_migrations_offline() -> None:
    """Emit SQL without a live connection (``alembic upgrade head --sql``)."""
    context.configure(
        url=database_url(),
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        # SQLite cannot ALTER most constraints in place
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        {"sqlalchemy.url": database_url()},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        do_run_migrations(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

"""Alembic migration environment.

Uses the engine and metadata of the Hearth server package so that
migrations run against the exact database the application uses.
"""

from __future__ import annotations

from alembic import context
from sqlmodel import SQLModel

from server.database import get_engine

# Register the tables on SQLModel.metadata before Alembic inspects it.
from server import models as _models  # noqa: F401

target_metadata = SQLModel.metadata


def run_migrations_online() -> None:
    """Run migrations with a real database connection."""
    with get_engine().connect() as conn:
        context.configure(
            connection=conn,
            target_metadata=target_metadata,
            # SQLite cannot ALTER most columns in place.
            render_as_batch=True,
        )

        with context.begin_transaction():
            context.run_migrations()


# Only online mode is supported.
if context.is_offline_mode():
    raise RuntimeError(
        "Offline migration mode is not supported. "
        "Run without --sql."
    )
else:
    run_migrations_online()

"""Alembic migration environment for Prunarr.

Runs inside the Flask app context (flask db upgrade) and uses the
Flask-SQLAlchemy engine. render_as_batch=True keeps ALTER TABLE working
on SQLite. Databases created by db.create_all() before Alembic was used
are stamped at head instead of being re-created.
"""

import logging
from logging.config import fileConfig

from alembic import context
from flask import current_app
from sqlalchemy import inspect

from db.models import *  # noqa: F401, F403

logger = logging.getLogger("alembic.env")

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = current_app.extensions["migrate"].db.metadata


def stamp_existing_db_if_needed(connection):
    """Stamp a pre-Alembic database (maintenance tables, no alembic_version) at head."""
    table_names = inspect(connection).get_table_names()
    if "alembic_version" in table_names or "maintenance_rules" not in table_names:
        return
    logger.info("Existing Prunarr database without alembic_version, stamping at 'head'")
    context.stamp(config, "head")


def run_migrations_offline():
    """Generate SQL without a database connection."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    def process_revision_directives(ctx, revision, directives):
        # autogenerate: drop empty revisions
        if getattr(config.cmd_opts, "autogenerate", False) and directives[0].upgrade_ops.is_empty():
            directives[:] = []
            logger.info("No changes in schema detected.")

    engine = current_app.extensions["migrate"].db.engine
    with engine.connect() as connection:
        stamp_existing_db_if_needed(connection)
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
            process_revision_directives=process_revision_directives,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

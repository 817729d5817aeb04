"""Database package: ORM models, repositories and Alembic migrations.

The engine and session come from Flask-SQLAlchemy (extensions.db); tables
are created in create_app() and evolved with Flask-Migrate.
"""

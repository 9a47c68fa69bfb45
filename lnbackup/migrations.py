"""
Database migrations for lnbackup.

Simple migration system to handle schema changes without requiring Alembic.
"""

import logging
from sqlalchemy import text, inspect
from lnbackup import db

logger = logging.getLogger(__name__)


# Columns added after the first schema release: (table, column, DDL type)
ADDITIVE_COLUMNS = [
    ('chapters', 'progress', 'INTEGER'),
    ('chapters', 'position', 'INTEGER NOT NULL DEFAULT 0'),
    ('task_history', 'summary', 'TEXT'),
    ('task_history', 'cancellation_requested', 'BOOLEAN NOT NULL DEFAULT 0'),
]


def init_database_schema(app):
    """
    Initialize database schema and run migrations.

    This function creates tables if they don't exist and runs any necessary migrations.
    It's designed to be called from multiple Gunicorn workers without conflicts.
    """
    with app.app_context():
        inspector = inspect(db.engine)
        existing_tables = inspector.get_table_names()

        # If no tables exist, create them all
        if not existing_tables:
            logger.info("No tables found - creating initial database schema")
            try:
                db.create_all()
                logger.info("Database schema created successfully")
            except Exception as e:
                # Another worker may have created the schema first
                logger.error(f"Failed to create database schema: {e}")
        else:
            # Tables exist - run migrations
            run_migrations(app, inspector)


def run_migrations(app, inspector=None):
    """
    Run all necessary database migrations.

    Creates tables introduced by newer releases, then adds any missing
    columns listed in ADDITIVE_COLUMNS.
    """
    if inspector is None:
        inspector = inspect(db.engine)

    # Migration 1: tables added since the database was created
    db.create_all()
    inspector = inspect(db.engine)
    table_names = inspector.get_table_names()

    # Migration 2: additive columns
    for table, column, ddl in ADDITIVE_COLUMNS:
        if table not in table_names:
            continue

        columns = [col['name'] for col in inspector.get_columns(table)]
        if column in columns:
            continue

        logger.info(f"Running migration: Adding {column} column to {table} table")
        try:
            db.session.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
            db.session.commit()
            logger.info(f"Successfully added {column} column")
        except Exception as e:
            logger.error(f"Failed to add {column} column: {e}")
            db.session.rollback()

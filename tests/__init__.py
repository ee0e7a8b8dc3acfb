#!/usr/bin/env python3
"""
Test suite configuration and utilities.

All tests can be run with standard Python tools:

    # Run all tests
    python -m pytest tests/ -v

    # Run only unit tests
    python -m pytest tests/unit -v

    # Using unittest
    python -m unittest discover tests -v

Database:
    Tests run against an in-memory SQLite database built from the ORM
    metadata, one fresh database per test. Set TEST_DATABASE_URL to run
    the same tests against PostgreSQL instead.
"""

import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database.models import Base

TEST_DB_URL = os.environ.get("TEST_DATABASE_URL", "sqlite://")


def make_engine(url: str = None):
    """
    Engine with every table created.

    SQLite needs explicit BEGIN handling for SAVEPOINT (``begin_nested``)
    to behave like PostgreSQL.
    """
    url = url or TEST_DB_URL
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")
    else:
        engine = create_engine(url)
        Base.metadata.drop_all(engine)

    Base.metadata.create_all(engine)
    return engine


def make_session_factory(url: str = None):
    """Fresh database plus a session factory bound to it."""
    return sessionmaker(autocommit=False, autoflush=False, bind=make_engine(url))

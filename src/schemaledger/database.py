"""Database tables and engine management for schemaledger.

Uses SQLAlchemy Core (not ORM) for explicit SQL control. Only the
bookkeeping tables live here; application schema is owned by the
migration files themselves.
"""

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine, make_url

from schemaledger.config import Config

# Shared metadata for bookkeeping tables
metadata = MetaData()


def utcnow() -> datetime:
    """Current time in UTC (timezone-aware)."""
    return datetime.now(timezone.utc)


# =============================================================================
# Schema Version Ledger
# =============================================================================

schema_migrations = Table(
    "schema_migrations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identifier", String(64), nullable=False, unique=True),
    Column("applied_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("description", Text, nullable=True),
    Column("checksum", String(64), nullable=True),  # sha256 hex of the file bytes
    Column("execution_ms", Integer, nullable=True),
)


# =============================================================================
# Migration Lock (dialects without advisory locks)
# =============================================================================

schema_migrations_lock = Table(
    "schema_migrations_lock",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("owner", String, nullable=True),
    Column("acquired_at", DateTime(timezone=True), nullable=False, default=utcnow),
)


# =============================================================================
# Helper Functions
# =============================================================================


def get_engine(config: Config) -> Engine:
    """Create SQLAlchemy engine from config.

    Args:
        config: Application configuration.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = make_url(config.database_url)

    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        # Ensure data directory exists
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, echo=config.log_level == "DEBUG")

    if engine.dialect.name == "sqlite":
        enable_sqlite_transactional_ddl(engine)

    return engine


def enable_sqlite_transactional_ddl(engine: Engine) -> None:
    """Make DDL on SQLite participate in SQLAlchemy transactions.

    pysqlite only opens a transaction implicitly before DML, so a failed
    migration would otherwise leave its CREATE/ALTER statements committed.
    Driver-level transaction handling is switched off and BEGIN is emitted
    by SQLAlchemy instead.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")


def create_tables(engine: Engine) -> None:
    """Create all bookkeeping tables in the database.

    Args:
        engine: SQLAlchemy Engine instance.
    """
    metadata.create_all(engine)

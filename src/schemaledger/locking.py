"""Mutual exclusion between migration runners.

PostgreSQL gets a session-level advisory lock on the runner's connection.
It survives the per-migration commits and is released explicitly (or by
the server when the session ends). Other dialects fall back to a single
row in schema_migrations_lock whose primary key makes a second insert
fail.

Acquisition never waits: contention raises LockContentionError so the
caller can decide when to retry.
"""

from __future__ import annotations

import hashlib
import os
import socket

from sqlalchemy import delete, select, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, OperationalError

from schemaledger.database import schema_migrations, schema_migrations_lock, utcnow
from schemaledger.errors import LockContentionError
from schemaledger.logging import get_logger

log = get_logger("locking")

LOCK_ROW_ID = 1


def default_lock_key(name: str = schema_migrations.name) -> int:
    """Derive a stable signed 64-bit advisory lock key from a name."""
    digest = hashlib.sha256(name.encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def default_owner() -> str:
    """Identify this process in the lock row."""
    return f"{socket.gethostname()}:{os.getpid()}"


class MigrationLock:
    """Context manager holding the migration lock on a connection.

    The connection must not be inside a transaction when the lock is
    acquired or released; both steps commit their own work.

    Attributes:
        conn: Connection the lock is tied to.
        key: Advisory lock key (PostgreSQL).
        owner: Label written to the lock row (other dialects).
    """

    def __init__(
        self,
        conn: Connection,
        key: int | None = None,
        owner: str | None = None,
    ) -> None:
        self.conn = conn
        self.key = key if key is not None else default_lock_key()
        self.owner = owner or default_owner()
        self.held = False

    @property
    def advisory(self) -> bool:
        """Whether the database supports advisory locks."""
        return self.conn.dialect.name == "postgresql"

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            LockContentionError: If another runner holds it.
        """
        if self.held:
            return

        if self.advisory:
            got = self.conn.execute(
                text("SELECT pg_try_advisory_lock(:key)"), {"key": self.key}
            ).scalar()
            self.conn.commit()
            if not got:
                log.warning("lock_contention", key=self.key)
                raise LockContentionError(
                    f"Another migration run holds advisory lock {self.key}"
                )
        else:
            try:
                # A rival may create the table between the check and the create
                schema_migrations_lock.create(self.conn, checkfirst=True)
                self.conn.execute(
                    schema_migrations_lock.insert().values(
                        id=LOCK_ROW_ID, owner=self.owner, acquired_at=utcnow()
                    )
                )
                self.conn.commit()
            except IntegrityError as e:
                self.conn.rollback()
                holder = current_holder(self.conn)
                log.warning("lock_contention", holder=holder)
                raise LockContentionError(
                    f"Another migration run holds the lock (owner: {holder})"
                ) from e
            except OperationalError as e:
                self.conn.rollback()
                log.warning("lock_contention", error=str(e.orig))
                raise LockContentionError(
                    f"Another migration run is setting up the lock: {e.orig}"
                ) from e

        self.held = True
        log.debug("lock_acquired", owner=self.owner, advisory=self.advisory)

    def release(self) -> None:
        """Give the lock back. Safe to call when not held."""
        if not self.held:
            return

        if self.conn.in_transaction():
            self.conn.rollback()

        if self.advisory:
            self.conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": self.key})
        else:
            self.conn.execute(
                delete(schema_migrations_lock).where(
                    schema_migrations_lock.c.id == LOCK_ROW_ID,
                    schema_migrations_lock.c.owner == self.owner,
                )
            )
        self.conn.commit()

        self.held = False
        log.debug("lock_released", owner=self.owner)

    def __enter__(self) -> "MigrationLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def current_holder(conn: Connection) -> str | None:
    """Owner recorded in the lock row, if any (non-advisory dialects)."""
    if conn.dialect.name == "postgresql":
        return None
    row = conn.execute(
        select(schema_migrations_lock.c.owner).where(schema_migrations_lock.c.id == LOCK_ROW_ID)
    ).first()
    conn.rollback()
    return row.owner if row else None


def force_unlock(conn: Connection) -> bool:
    """Delete a stale lock row left behind by a crashed runner.

    Advisory locks die with their session, so on PostgreSQL there is
    nothing to clear.

    Returns:
        True if a lock row was removed.
    """
    if conn.dialect.name == "postgresql":
        return False

    schema_migrations_lock.create(conn, checkfirst=True)
    result = conn.execute(
        delete(schema_migrations_lock).where(schema_migrations_lock.c.id == LOCK_ROW_ID)
    )
    conn.commit()

    removed = result.rowcount > 0
    if removed:
        log.warning("lock_force_released")
    return removed

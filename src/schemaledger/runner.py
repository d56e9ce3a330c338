"""Migration runner for schemaledger.

This module provides the core migration functionality:
- Computing the pending set from the store and the ledger
- Applying each pending migration in its own transaction
- Recording applied migrations in the ledger
- Stopping at the first failure with the database rolled back to the
  last good migration
"""

from __future__ import annotations

import time
from pathlib import Path

from pydantic import BaseModel
from sqlalchemy.engine import Connection, Engine

from schemaledger.errors import (
    ChecksumMismatchError,
    DuplicateIdentifierError,
    ExecutionError,
    MigrationError,
)
from schemaledger.ledger import SchemaLedger
from schemaledger.locking import MigrationLock
from schemaledger.logging import get_logger
from schemaledger.models import LedgerEntry, MigrationState
from schemaledger.store import Migration, MigrationStore

log = get_logger("runner")


class MigrationRunner:
    """Applies pending migrations from a store, recording them in a ledger.

    Attributes:
        store: Source of migration files.
        ledger: Ledger bound to the connection migrations run on.
        lock: Lock held for the duration of apply(); None to run unlocked.
        verify_checksums: Refuse to run if an applied file was edited.
        target: Last identifier to apply (inclusive); None for all.
        states: State of every migration this runner has looked at.
    """

    def __init__(
        self,
        store: MigrationStore,
        ledger: SchemaLedger,
        lock: MigrationLock | None = None,
        verify_checksums: bool = True,
        target: str | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.lock = lock
        self.verify_checksums = verify_checksums
        self.target = target
        self.states: dict[str, MigrationState] = {}

    @property
    def conn(self) -> Connection:
        return self.ledger.conn

    def pending(self) -> list[Migration]:
        """Migrations not yet in the ledger, in identifier order.

        Does not take the lock; use it for reporting only.
        """
        migrations = self.store.all()
        applied = self.ledger.list_applied()
        self._end_read()
        return self._select_pending(migrations, applied)

    def apply(self) -> list[str]:
        """Apply all pending migrations.

        Returns:
            Identifiers applied in this run, in order. Empty when the
            database is already up to date.

        Raises:
            MalformedNameError: A file name is invalid (nothing was run).
            DuplicateIdentifierError: Two files, or a file and the ledger, collide.
            ChecksumMismatchError: An applied file changed (nothing was run).
            LockContentionError: Another runner holds the lock.
            ExecutionError: A migration failed; it was rolled back and the
                run stopped.
        """
        # Name and duplicate errors surface here, before any transaction
        migrations = self.store.all()
        for migration in migrations:
            self.states.setdefault(migration.identifier, MigrationState.PENDING)

        if self.lock is not None:
            self.lock.acquire()

        try:
            return self._apply_locked(migrations)
        finally:
            if self.lock is not None:
                self.lock.release()

    def _apply_locked(self, migrations: list[Migration]) -> list[str]:
        self.ledger.ensure()
        applied = self.ledger.list_applied()
        recorded = {e.identifier: e for e in self.ledger.entries()} if self.verify_checksums else {}
        self._end_read()

        on_disk = {m.identifier for m in migrations}
        for identifier in sorted(applied - on_disk):
            log.warning("applied_migration_missing_file", identifier=identifier)

        if self.verify_checksums:
            self._verify(migrations, recorded)

        pending = self._select_pending(migrations, applied)
        if not pending:
            log.info("no_pending_migrations")
            return []

        newest_applied = max(applied) if applied else None
        applied_now: list[str] = []

        for migration in pending:
            if newest_applied is not None and migration.identifier < newest_applied:
                log.warning(
                    "out_of_order_migration",
                    identifier=migration.identifier,
                    newest_applied=newest_applied,
                )
            self._apply_one(migration)
            applied_now.append(migration.identifier)

        log.info("migrations_complete", count=len(applied_now))
        return applied_now

    def _apply_one(self, migration: Migration) -> None:
        identifier = migration.identifier
        description = migration.description

        log.info("applying_migration", identifier=identifier, description=description)
        self.states[identifier] = MigrationState.RUNNING
        started = time.monotonic()

        try:
            with self.conn.begin():
                # Re-read inside the transaction that will write the row
                if self.ledger.is_applied(identifier):
                    raise DuplicateIdentifierError(
                        f"Migration {identifier} was applied by another run", identifier
                    )
                migration.run(self.conn)
                elapsed_ms = int((time.monotonic() - started) * 1000)
                self.ledger.record_applied(
                    identifier,
                    description,
                    checksum=migration.checksum,
                    execution_ms=elapsed_ms,
                )
        except MigrationError as e:
            self.states[identifier] = MigrationState.FAILED
            log.error("migration_failed", identifier=identifier, error=str(e))
            raise
        except Exception as e:
            self.states[identifier] = MigrationState.FAILED
            log.error("migration_failed", identifier=identifier, error=str(e))
            raise ExecutionError(identifier, e) from e

        self.states[identifier] = MigrationState.APPLIED
        log.info("migration_applied", identifier=identifier, duration_ms=elapsed_ms)

    def _select_pending(self, migrations: list[Migration], applied: set[str]) -> list[Migration]:
        pending = []
        for migration in migrations:
            if migration.identifier in applied:
                self.states[migration.identifier] = MigrationState.APPLIED
                continue
            if self.target is not None and migration.identifier > self.target:
                break
            pending.append(migration)
        return pending

    def _verify(self, migrations: list[Migration], recorded: dict[str, LedgerEntry]) -> None:
        for migration in migrations:
            entry = recorded.get(migration.identifier)
            if entry is None or entry.checksum is None:
                continue
            actual = migration.checksum
            if actual != entry.checksum:
                log.error(
                    "checksum_mismatch",
                    identifier=migration.identifier,
                    expected=entry.checksum,
                    actual=actual,
                )
                raise ChecksumMismatchError(migration.identifier, entry.checksum, actual)

    def _end_read(self) -> None:
        if self.conn.in_transaction():
            self.conn.commit()


def apply(store: MigrationStore, ledger: SchemaLedger) -> list[str]:
    """Apply pending migrations from store, unlocked, recording them in ledger.

    Args:
        store: Migration files.
        ledger: Ledger bound to a connection that is not in a transaction.

    Returns:
        Identifiers applied in this run.
    """
    return MigrationRunner(store, ledger).apply()


def migrate(
    engine: Engine,
    directory: Path | str,
    target: str | None = None,
    verify_checksums: bool = True,
    lock_key: int | None = None,
    lock_owner: str | None = None,
) -> list[str]:
    """Apply pending migrations from directory to the database.

    Takes the migration lock for the duration of the run.

    Args:
        engine: SQLAlchemy engine.
        directory: Migrations directory.
        target: Last identifier to apply (inclusive). If None, apply all.
        verify_checksums: Refuse to run if an applied file was edited.
        lock_key: Advisory lock key override.
        lock_owner: Lock row owner label override.

    Returns:
        Identifiers applied in this run.
    """
    store = MigrationStore(directory)
    with engine.connect() as conn:
        runner = MigrationRunner(
            store,
            SchemaLedger(conn),
            lock=MigrationLock(conn, key=lock_key, owner=lock_owner),
            verify_checksums=verify_checksums,
            target=target,
        )
        return runner.apply()


class MigrationStatus(BaseModel):
    """Snapshot of where a database stands against a migrations directory."""

    applied: list[LedgerEntry]
    pending: list[Migration]
    missing_files: list[str]
    modified: list[str]

    @property
    def up_to_date(self) -> bool:
        return not self.pending


def status(engine: Engine, directory: Path | str) -> MigrationStatus:
    """Report applied, pending, orphaned and modified migrations.

    Read-only; does not take the lock.

    Args:
        engine: SQLAlchemy engine.
        directory: Migrations directory.

    Returns:
        MigrationStatus snapshot.
    """
    migrations = MigrationStore(directory).all()
    by_id = {m.identifier: m for m in migrations}

    with engine.connect() as conn:
        entries = SchemaLedger(conn).entries()

    applied_ids = {e.identifier for e in entries}
    modified = [
        e.identifier
        for e in entries
        if e.checksum is not None
        and e.identifier in by_id
        and by_id[e.identifier].checksum != e.checksum
    ]

    return MigrationStatus(
        applied=entries,
        pending=[m for m in migrations if m.identifier not in applied_ids],
        missing_files=[e.identifier for e in entries if e.identifier not in by_id],
        modified=modified,
    )

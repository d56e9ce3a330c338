"""Schema version ledger.

The schema_migrations table is the only record of which migrations have
run. Rows are append-only and the identifier column is UNIQUE, so a
second insert for the same migration fails in the database even if two
runners race past the application-level checks.
"""

from __future__ import annotations

from sqlalchemy import inspect, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from schemaledger.database import schema_migrations, utcnow
from schemaledger.errors import DuplicateIdentifierError
from schemaledger.logging import get_logger
from schemaledger.models import LedgerEntry

log = get_logger("ledger")


class SchemaLedger:
    """Ledger bound to an explicit connection.

    Reads and writes join whatever transaction is open on the connection;
    the ledger never commits on its own.

    Attributes:
        conn: SQLAlchemy connection used for all ledger access.
    """

    table = schema_migrations

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def exists(self) -> bool:
        """Whether the ledger table has been created."""
        return inspect(self.conn).has_table(self.table.name)

    def ensure(self) -> None:
        """Create the ledger table if it is missing."""
        if not self.exists():
            self.table.create(self.conn, checkfirst=True)
            log.info("ledger_created", table=self.table.name)

    def list_applied(self) -> set[str]:
        """Identifiers of every applied migration.

        Returns:
            Set of identifiers; empty if the table doesn't exist yet.
        """
        if not self.exists():
            return set()
        rows = self.conn.execute(select(self.table.c.identifier)).scalars()
        return set(rows)

    def is_applied(self, identifier: str) -> bool:
        """Whether one identifier is recorded."""
        row = self.conn.execute(
            select(self.table.c.id).where(self.table.c.identifier == identifier)
        ).first()
        return row is not None

    def entries(self) -> list[LedgerEntry]:
        """All ledger rows, ordered by identifier."""
        if not self.exists():
            return []
        rows = self.conn.execute(select(self.table).order_by(self.table.c.identifier))
        return [LedgerEntry.model_validate(dict(row._mapping)) for row in rows]

    def record_applied(
        self,
        identifier: str,
        description: str | None,
        checksum: str | None = None,
        execution_ms: int | None = None,
    ) -> None:
        """Insert one ledger row.

        Args:
            identifier: Migration identifier.
            description: Free-text description.
            checksum: SHA-256 of the migration file.
            execution_ms: How long the body took.

        Raises:
            DuplicateIdentifierError: If the identifier is already recorded.
        """
        try:
            # Savepoint so a collision doesn't poison the caller's transaction
            with self.conn.begin_nested():
                self.conn.execute(
                    self.table.insert().values(
                        identifier=identifier,
                        applied_at=utcnow(),
                        description=description,
                        checksum=checksum,
                        execution_ms=execution_ms,
                    )
                )
        except IntegrityError as e:
            log.error("ledger_duplicate_identifier", identifier=identifier)
            raise DuplicateIdentifierError(
                f"Migration {identifier} is already recorded in the ledger", identifier
            ) from e

        log.debug("ledger_recorded", identifier=identifier)

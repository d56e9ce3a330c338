"""Tests for the schema version ledger."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import inspect

from schemaledger.errors import DuplicateIdentifierError
from schemaledger.ledger import SchemaLedger


class TestLedgerTable:
    """Tests for creating and probing the ledger table."""

    def test_missing_table_reads_empty(self, engine) -> None:
        """A fresh database has no ledger and nothing applied."""
        with engine.connect() as conn:
            ledger = SchemaLedger(conn)
            assert ledger.exists() is False
            assert ledger.list_applied() == set()
            assert ledger.entries() == []

    def test_ensure_creates_table(self, engine) -> None:
        """ensure() creates schema_migrations with the expected columns."""
        with engine.begin() as conn:
            SchemaLedger(conn).ensure()

        inspector = inspect(engine)
        assert inspector.has_table("schema_migrations")
        columns = {c["name"] for c in inspector.get_columns("schema_migrations")}
        assert {"id", "identifier", "applied_at", "description", "checksum", "execution_ms"} <= columns

    def test_ensure_is_idempotent(self, engine) -> None:
        """Calling ensure() twice is harmless."""
        with engine.begin() as conn:
            SchemaLedger(conn).ensure()
        with engine.begin() as conn:
            SchemaLedger(conn).ensure()

        assert inspect(engine).has_table("schema_migrations")


class TestRecordApplied:
    """Tests for writing ledger rows."""

    def test_record_and_list(self, engine) -> None:
        """Recorded identifiers show up in list_applied()."""
        with engine.begin() as conn:
            ledger = SchemaLedger(conn)
            ledger.ensure()
            ledger.record_applied("20250101000000", "create users")
            ledger.record_applied("20250102000000", None)

        with engine.connect() as conn:
            ledger = SchemaLedger(conn)
            assert ledger.list_applied() == {"20250101000000", "20250102000000"}
            assert ledger.is_applied("20250101000000")
            assert not ledger.is_applied("20250103000000")

    def test_entries_carry_metadata(self, engine) -> None:
        """entries() returns full rows ordered by identifier."""
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        with engine.begin() as conn:
            ledger = SchemaLedger(conn)
            ledger.ensure()
            ledger.record_applied("20250102000000", "second", checksum="b" * 64, execution_ms=12)
            ledger.record_applied("20250101000000", "first", checksum="a" * 64)

        with engine.connect() as conn:
            entries = SchemaLedger(conn).entries()

        assert [e.identifier for e in entries] == ["20250101000000", "20250102000000"]
        assert entries[0].description == "first"
        assert entries[0].checksum == "a" * 64
        assert entries[0].execution_ms is None
        assert entries[1].execution_ms == 12
        assert entries[0].applied_at.replace(tzinfo=None) >= before.replace(microsecond=0)

    def test_duplicate_identifier_rejected(self, engine) -> None:
        """The UNIQUE constraint turns a second insert into DuplicateIdentifierError."""
        with engine.connect() as conn:
            ledger = SchemaLedger(conn)
            with conn.begin():
                ledger.ensure()
                ledger.record_applied("20250101000000", "first")

            with conn.begin():
                with pytest.raises(DuplicateIdentifierError) as exc_info:
                    ledger.record_applied("20250101000000", "again")
                # The enclosing transaction is still usable
                assert ledger.list_applied() == {"20250101000000"}

        assert exc_info.value.identifier == "20250101000000"

    def test_rollback_discards_row(self, engine) -> None:
        """Rows written in a rolled-back transaction don't persist."""
        with engine.begin() as conn:
            SchemaLedger(conn).ensure()

        with engine.connect() as conn:
            ledger = SchemaLedger(conn)
            trans = conn.begin()
            ledger.record_applied("20250101000000", "first")
            trans.rollback()

            assert ledger.list_applied() == set()

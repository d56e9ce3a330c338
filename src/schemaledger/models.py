"""Pydantic models for schemaledger entities.

These models bridge between the bookkeeping tables (SQLAlchemy Core) and
application code.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


# =============================================================================
# Enums
# =============================================================================


class MigrationKind(str, Enum):
    """How a migration body is expressed."""

    SQL = "sql"
    PYTHON = "py"


class MigrationState(str, Enum):
    """Per-migration state during a run.

    pending -> running -> applied
    pending -> running -> failed
    """

    PENDING = "pending"
    RUNNING = "running"
    APPLIED = "applied"
    FAILED = "failed"


class DDLOutcome(str, Enum):
    """Result of a guarded DDL helper."""

    APPLIED = "applied"
    SKIPPED = "skipped"


class SchemaObjectType(str, Enum):
    """Kinds of schema object the DDL helpers guard."""

    TABLE = "table"
    COLUMN = "column"
    INDEX = "index"
    CONSTRAINT = "constraint"


# =============================================================================
# Records
# =============================================================================


class LedgerEntry(BaseModel):
    """One applied migration, as recorded in schema_migrations."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    identifier: str
    applied_at: datetime
    description: str | None = None
    checksum: str | None = None
    execution_ms: int | None = None


class DDLResult(BaseModel):
    """What a DDL helper did."""

    model_config = ConfigDict(frozen=True)

    outcome: DDLOutcome
    object_type: SchemaObjectType
    name: str
    statement: str | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == DDLOutcome.APPLIED

    @property
    def skipped(self) -> bool:
        return self.outcome == DDLOutcome.SKIPPED

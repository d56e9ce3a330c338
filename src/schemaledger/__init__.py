"""schemaledger - idempotent SQL schema migrations.

Applies a directory of timestamp-named migration files in order, each in
its own transaction, and records them in a schema_migrations ledger.
"""

__version__ = "0.1.0"

from schemaledger.errors import (
    ChecksumMismatchError,
    DuplicateIdentifierError,
    ExecutionError,
    LockContentionError,
    MalformedNameError,
    MigrationError,
)
from schemaledger.ledger import SchemaLedger
from schemaledger.runner import MigrationRunner, apply, migrate, status
from schemaledger.store import Migration, MigrationStore

__all__ = [
    "ChecksumMismatchError",
    "DuplicateIdentifierError",
    "ExecutionError",
    "LockContentionError",
    "MalformedNameError",
    "Migration",
    "MigrationError",
    "MigrationRunner",
    "MigrationStore",
    "SchemaLedger",
    "__version__",
    "apply",
    "migrate",
    "status",
]

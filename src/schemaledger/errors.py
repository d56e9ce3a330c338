"""Exception hierarchy for schemaledger.

Every error raised by the store, ledger, lock or runner derives from
MigrationError and carries the offending migration identifier when one
is known.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base class for all migration failures."""

    def __init__(self, message: str, identifier: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.identifier = identifier


class MalformedNameError(MigrationError):
    """Raised when a file in the migrations directory has an invalid name."""

    def __init__(self, filename: str) -> None:
        super().__init__(
            f"Malformed migration file name: {filename!r} "
            "(expected <14-digit timestamp>_<slug>.sql or .py)"
        )
        self.filename = filename


class DuplicateIdentifierError(MigrationError):
    """Raised when two migrations, or a migration and the ledger, collide."""


class ExecutionError(MigrationError):
    """Raised when a migration body fails. The transaction has been rolled back."""

    def __init__(self, identifier: str, cause: BaseException) -> None:
        super().__init__(f"Migration {identifier} failed: {cause}", identifier)
        self.cause = cause


class LockContentionError(MigrationError):
    """Raised when another runner already holds the migration lock."""


class ChecksumMismatchError(MigrationError):
    """Raised when an applied migration file was edited after it ran."""

    def __init__(self, identifier: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Migration {identifier} was modified after it was applied "
            f"(recorded checksum {expected[:12]}, file checksum {actual[:12]})",
            identifier,
        )
        self.expected = expected
        self.actual = actual

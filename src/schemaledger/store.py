"""Migration file discovery for schemaledger.

Migrations live in a single directory, one file each, named
YYYYMMDDHHMMSS_slug.sql or YYYYMMDDHHMMSS_slug.py. The 14-digit timestamp
is the migration identifier; identifiers sort lexically in the order they
must be applied.

SQL migrations are split into statements and executed one by one. Python
migrations define upgrade(conn) and usually lean on schemaledger.ddl:

    DESCRIPTION = "Track last login"

    def upgrade(conn):
        ddl.add_column_if_not_exists(conn, "users", "last_login", "TIMESTAMPTZ")
"""

from __future__ import annotations

import ast
import hashlib
import importlib.util
import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType

from pydantic import BaseModel, ConfigDict
from sqlalchemy.engine import Connection

from schemaledger.errors import DuplicateIdentifierError, MalformedNameError
from schemaledger.logging import get_logger
from schemaledger.models import MigrationKind
from schemaledger.sqlsplit import split_statements, strip_transaction_control

log = get_logger("store")

MIGRATION_NAME = re.compile(r"^(\d{14})_([A-Za-z0-9][A-Za-z0-9_-]*)\.(sql|py)$")
SLUG = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
IDENTIFIER_FORMAT = "%Y%m%d%H%M%S"


class Migration(BaseModel):
    """A migration file on disk. The body is only read when asked for."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    slug: str
    path: Path
    kind: MigrationKind

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def description(self) -> str:
        """Human description: DESCRIPTION for Python files, else the slug."""
        if self.kind == MigrationKind.PYTHON:
            try:
                declared = _declared_description(self.read_text())
            except UnicodeDecodeError:
                # Undecodable source fails properly when run()
                declared = None
            if declared:
                return declared
        return re.sub(r"[_-]+", " ", self.slug)

    @property
    def checksum(self) -> str:
        """SHA-256 hex digest of the file bytes."""
        return hashlib.sha256(self.path.read_bytes()).hexdigest()

    def read_text(self) -> str:
        return self.path.read_text(encoding="utf-8")

    def statements(self) -> list[str]:
        """Statements of a SQL migration, without transaction control.

        Raises:
            TypeError: If this is not a SQL migration.
        """
        if self.kind != MigrationKind.SQL:
            raise TypeError(f"{self.filename} is not a SQL migration")
        return strip_transaction_control(split_statements(self.read_text()))

    def load_module(self) -> ModuleType:
        """Import a Python migration from its file."""
        spec = importlib.util.spec_from_file_location(
            f"schemaledger_migration_{self.identifier}", self.path
        )
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load migration module {self.path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    def run(self, conn: Connection) -> None:
        """Execute the migration body on conn.

        The caller owns the transaction; nothing here commits, and
        upgrade(conn) is not allowed to commit or roll back either.

        Args:
            conn: Connection with an open transaction.

        Raises:
            TypeError: If a Python migration has no callable upgrade().
            RuntimeError: If upgrade() tries to end the transaction.
        """
        if self.kind == MigrationKind.SQL:
            for statement in self.statements():
                log.debug("executing_statement", identifier=self.identifier, sql=statement[:200])
                conn.exec_driver_sql(statement, execution_options={"no_parameters": True})
            return

        module = self.load_module()
        upgrade = getattr(module, "upgrade", None)
        if not callable(upgrade):
            raise TypeError(f"{self.filename} does not define upgrade(conn)")
        with _transaction_owned_by_caller(conn, self.filename):
            upgrade(conn)


class MigrationStore:
    """Read-only view over a migrations directory.

    Iterating yields Migration records ordered by identifier. Every
    iteration rescans the directory, so the store can be reused after
    files are added.

    Attributes:
        directory: Directory holding migration files.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def __iter__(self) -> Iterator[Migration]:
        return iter(self.all())

    def all(self) -> list[Migration]:
        """Scan the directory.

        Returns:
            Migrations sorted by identifier ascending.

        Raises:
            FileNotFoundError: If the directory doesn't exist.
            MalformedNameError: If a file name doesn't follow the convention.
            DuplicateIdentifierError: If two files share an identifier.
        """
        if not self.directory.is_dir():
            raise FileNotFoundError(f"Migrations directory not found: {self.directory}")

        found: dict[str, Migration] = {}

        for path in sorted(self.directory.iterdir()):
            if path.is_dir() or path.name.startswith((".", "_")):
                continue

            match = MIGRATION_NAME.match(path.name)
            if not match:
                log.error("malformed_migration_name", file=path.name)
                raise MalformedNameError(path.name)

            identifier, slug, ext = match.groups()
            if identifier in found:
                log.error(
                    "duplicate_migration_identifier",
                    identifier=identifier,
                    file=path.name,
                    existing=found[identifier].filename,
                )
                raise DuplicateIdentifierError(
                    f"Migration identifier {identifier} is used by both "
                    f"{found[identifier].filename} and {path.name}",
                    identifier,
                )

            found[identifier] = Migration(
                identifier=identifier,
                slug=slug,
                path=path,
                kind=MigrationKind(ext),
            )

        migrations = [found[key] for key in sorted(found)]
        log.debug("migrations_discovered", count=len(migrations), directory=str(self.directory))
        return migrations

    def get(self, identifier: str) -> Migration | None:
        """Look up one migration by identifier."""
        for migration in self.all():
            if migration.identifier == identifier:
                return migration
        return None

    def new(
        self,
        slug: str,
        kind: MigrationKind = MigrationKind.SQL,
        now: datetime | None = None,
    ) -> Migration:
        """Create an empty migration file stamped with the current UTC time.

        Args:
            slug: Short description, letters, digits, '_' and '-'.
            kind: SQL or Python migration.
            now: Timestamp to use instead of the current time.

        Returns:
            The new Migration.

        Raises:
            ValueError: If the slug is not valid.
            DuplicateIdentifierError: If a migration with this timestamp exists.
        """
        if not SLUG.match(slug):
            raise ValueError(f"Invalid migration slug: {slug!r}")

        now = now or datetime.now(timezone.utc)
        identifier = now.strftime(IDENTIFIER_FORMAT)

        self.directory.mkdir(parents=True, exist_ok=True)
        if self.get(identifier) is not None:
            raise DuplicateIdentifierError(
                f"A migration with identifier {identifier} already exists", identifier
            )

        path = self.directory / f"{identifier}_{slug}.{kind.value}"
        path.write_text(_template(kind, slug, now), encoding="utf-8")
        log.info("migration_created", identifier=identifier, file=path.name)

        return Migration(identifier=identifier, slug=slug, path=path, kind=kind)


@contextmanager
def _transaction_owned_by_caller(conn: Connection, filename: str) -> Iterator[None]:
    """Refuse conn.commit() and conn.rollback() while a migration body runs.

    A commit inside upgrade() would make the statements before it permanent
    even if the migration then fails.
    """

    def refuse(*args, **kwargs):
        raise RuntimeError(
            f"{filename} must not commit or roll back; "
            "each migration runs in a transaction owned by the runner"
        )

    conn.commit = refuse
    conn.rollback = refuse
    try:
        yield
    finally:
        del conn.commit
        del conn.rollback


def _declared_description(source: str) -> str | None:
    """Read a module-level DESCRIPTION string literal without importing."""
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return None

    for node in tree.body:
        if (
            isinstance(node, ast.Assign)
            and any(isinstance(t, ast.Name) and t.id == "DESCRIPTION" for t in node.targets)
            and isinstance(node.value, ast.Constant)
            and isinstance(node.value.value, str)
        ):
            return node.value.value
    return None


def _template(kind: MigrationKind, slug: str, now: datetime) -> str:
    title = re.sub(r"[_-]+", " ", slug)
    if kind == MigrationKind.SQL:
        return (
            f"-- {title}\n"
            f"-- Created {now.isoformat()}\n"
            "--\n"
            "-- Runs inside a transaction; prefer IF NOT EXISTS forms so the\n"
            "-- statements are safe to re-run.\n\n"
        )
    return (
        f'"""{title.capitalize()}."""\n\n'
        "from schemaledger import ddl\n\n"
        f'DESCRIPTION = "{title.capitalize()}"\n\n\n'
        "def upgrade(conn):\n"
        '    """Apply this migration."""\n'
        "    pass\n"
    )

"""Idempotent DDL helpers.

Each helper looks the object up in the catalog on the caller's
connection, does nothing if it is already in the wanted state, and
otherwise executes one statement. The
return value says which happened:

    result = add_column_if_not_exists(conn, "users", "last_login", "TIMESTAMPTZ")
    result.outcome  # DDLOutcome.APPLIED, then DDLOutcome.SKIPPED on re-run

Existence is decided by exact name only. A column with the right name but
the wrong type, or an index with a different definition, counts as
present; drift between the two is not detected here.

Identifiers are quoted for the connection's dialect. Column types, index
expressions, constraint definitions and WHERE clauses are SQL fragments
and are passed through verbatim.
"""

from __future__ import annotations

from sqlalchemy import Table, inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.schema import CreateTable

from schemaledger.logging import get_logger
from schemaledger.models import DDLOutcome, DDLResult, SchemaObjectType

log = get_logger("ddl")


# =============================================================================
# Catalog Lookups
# =============================================================================


def table_exists(conn: Connection, table_name: str, schema: str | None = None) -> bool:
    """Whether a table with exactly this name exists."""
    return inspect(conn).has_table(table_name, schema=schema)


def column_exists(
    conn: Connection, table_name: str, column_name: str, schema: str | None = None
) -> bool:
    """Whether table_name has a column named column_name."""
    columns = inspect(conn).get_columns(table_name, schema=schema)
    return any(c["name"] == column_name for c in columns)


def index_exists(conn: Connection, index_name: str, schema: str | None = None) -> bool:
    """Whether an index with this name exists on any table in the schema.

    Index names share one namespace per schema in both PostgreSQL and
    SQLite, so every table is searched. Those two are asked through their
    catalogs directly because the inspector leaves out expression indexes
    on SQLite.
    """
    dialect = conn.dialect.name
    if dialect == "postgresql":
        row = conn.execute(
            text(
                "SELECT 1 FROM pg_indexes "
                "WHERE indexname = :name AND schemaname = coalesce(:schema, current_schema())"
            ),
            {"name": index_name, "schema": schema},
        ).first()
        return row is not None
    if dialect == "sqlite":
        master = f"{_quote(conn, schema)}.sqlite_master" if schema else "sqlite_master"
        row = conn.execute(
            text(f"SELECT 1 FROM {master} WHERE type = 'index' AND name = :name"),
            {"name": index_name},
        ).first()
        return row is not None

    all_indexes = inspect(conn).get_multi_indexes(schema=schema)
    return any(
        index["name"] == index_name
        for indexes in all_indexes.values()
        for index in indexes
    )


def constraint_exists(
    conn: Connection, table_name: str, constraint_name: str, schema: str | None = None
) -> bool:
    """Whether table_name has a named constraint (PK, FK, UNIQUE or CHECK)."""
    inspector = inspect(conn)
    names: set[str | None] = {inspector.get_pk_constraint(table_name, schema=schema).get("name")}
    names.update(fk["name"] for fk in inspector.get_foreign_keys(table_name, schema=schema))
    names.update(uc["name"] for uc in inspector.get_unique_constraints(table_name, schema=schema))
    try:
        names.update(cc["name"] for cc in inspector.get_check_constraints(table_name, schema=schema))
    except NotImplementedError:
        pass  # dialect can't reflect CHECK constraints
    return constraint_name in names


# =============================================================================
# Create / Add
# =============================================================================


def create_table_if_not_exists(
    conn: Connection,
    table_name: str,
    creation: str | Table,
    schema: str | None = None,
) -> DDLResult:
    """Create a table unless one with this name exists.

    Args:
        conn: Connection with an open transaction.
        table_name: Table to look for.
        creation: Full CREATE TABLE statement, or a SQLAlchemy Table.
        schema: Optional schema name.

    Returns:
        DDLResult with APPLIED or SKIPPED.
    """
    if table_exists(conn, table_name, schema):
        return _skipped(SchemaObjectType.TABLE, _display(table_name, schema))

    if isinstance(creation, Table):
        statement = str(CreateTable(creation).compile(dialect=conn.dialect)).strip()
        creation.create(conn)
        return _applied(SchemaObjectType.TABLE, _display(table_name, schema), statement)

    return _execute(conn, SchemaObjectType.TABLE, _display(table_name, schema), creation)


def add_column_if_not_exists(
    conn: Connection,
    table_name: str,
    column_name: str,
    column_type: str,
    schema: str | None = None,
) -> DDLResult:
    """Add a column unless the table already has one with this name.

    Args:
        conn: Connection with an open transaction.
        table_name: Existing table.
        column_name: Column to add.
        column_type: Type and modifiers, e.g. "TIMESTAMPTZ" or "TEXT NOT NULL DEFAULT ''".
        schema: Optional schema name.

    Returns:
        DDLResult with APPLIED or SKIPPED.
    """
    name = f"{_display(table_name, schema)}.{column_name}"
    if column_exists(conn, table_name, column_name, schema):
        return _skipped(SchemaObjectType.COLUMN, name)

    statement = (
        f"ALTER TABLE {_qualified(conn, table_name, schema)} "
        f"ADD COLUMN {_quote(conn, column_name)} {column_type}"
    )
    return _execute(conn, SchemaObjectType.COLUMN, name, statement)


def create_index_if_not_exists(
    conn: Connection,
    index_name: str,
    table_name: str,
    column_expression: str,
    index_type: str | None = None,
    where_clause: str | None = None,
    unique: bool = False,
    schema: str | None = None,
) -> DDLResult:
    """Create an index unless one with this name exists.

    Args:
        conn: Connection with an open transaction.
        index_name: Index name; checked schema-wide.
        table_name: Table to index.
        column_expression: Column list or expression, e.g. "email" or "lower(email)".
        index_type: Access method such as "gin" (PostgreSQL USING clause).
        where_clause: Predicate for a partial index.
        unique: Create a UNIQUE index.
        schema: Optional schema name.

    Returns:
        DDLResult with APPLIED or SKIPPED.
    """
    if index_exists(conn, index_name, schema):
        return _skipped(SchemaObjectType.INDEX, index_name)

    parts = [
        "CREATE UNIQUE INDEX" if unique else "CREATE INDEX",
        _quote(conn, index_name),
        "ON",
        _qualified(conn, table_name, schema),
    ]
    if index_type:
        parts.append(f"USING {index_type}")
    parts.append(f"({column_expression})")
    if where_clause:
        parts.append(f"WHERE {where_clause}")

    return _execute(conn, SchemaObjectType.INDEX, index_name, " ".join(parts))


def add_constraint_if_not_exists(
    conn: Connection,
    table_name: str,
    constraint_name: str,
    definition: str,
    schema: str | None = None,
) -> DDLResult:
    """Add a named constraint unless the table already has one by that name.

    Args:
        conn: Connection with an open transaction.
        table_name: Table to alter.
        constraint_name: Constraint name.
        definition: Body, e.g. "UNIQUE (email)" or "CHECK (age >= 0)".
        schema: Optional schema name.

    Returns:
        DDLResult with APPLIED or SKIPPED.
    """
    if constraint_exists(conn, table_name, constraint_name, schema):
        return _skipped(SchemaObjectType.CONSTRAINT, constraint_name)

    statement = (
        f"ALTER TABLE {_qualified(conn, table_name, schema)} "
        f"ADD CONSTRAINT {_quote(conn, constraint_name)} {definition}"
    )
    return _execute(conn, SchemaObjectType.CONSTRAINT, constraint_name, statement)


# =============================================================================
# Drop
# =============================================================================


def drop_table_if_exists(
    conn: Connection, table_name: str, schema: str | None = None
) -> DDLResult:
    """Drop a table if it exists."""
    if not table_exists(conn, table_name, schema):
        return _skipped(SchemaObjectType.TABLE, _display(table_name, schema))

    statement = f"DROP TABLE {_qualified(conn, table_name, schema)}"
    return _execute(conn, SchemaObjectType.TABLE, _display(table_name, schema), statement)


def drop_column_if_exists(
    conn: Connection, table_name: str, column_name: str, schema: str | None = None
) -> DDLResult:
    """Drop a column if the table has it."""
    name = f"{_display(table_name, schema)}.{column_name}"
    if not column_exists(conn, table_name, column_name, schema):
        return _skipped(SchemaObjectType.COLUMN, name)

    statement = (
        f"ALTER TABLE {_qualified(conn, table_name, schema)} "
        f"DROP COLUMN {_quote(conn, column_name)}"
    )
    return _execute(conn, SchemaObjectType.COLUMN, name, statement)


def drop_index_if_exists(
    conn: Connection, index_name: str, schema: str | None = None
) -> DDLResult:
    """Drop an index if it exists."""
    if not index_exists(conn, index_name, schema):
        return _skipped(SchemaObjectType.INDEX, index_name)

    statement = f"DROP INDEX {_qualified(conn, index_name, schema)}"
    return _execute(conn, SchemaObjectType.INDEX, index_name, statement)


# =============================================================================
# Internals
# =============================================================================


def _quote(conn: Connection, name: str) -> str:
    return conn.dialect.identifier_preparer.quote(name)


def _qualified(conn: Connection, name: str, schema: str | None) -> str:
    if schema:
        return f"{conn.dialect.identifier_preparer.quote_schema(schema)}.{_quote(conn, name)}"
    return _quote(conn, name)


def _display(name: str, schema: str | None) -> str:
    return f"{schema}.{name}" if schema else name


def _execute(
    conn: Connection, object_type: SchemaObjectType, name: str, statement: str
) -> DDLResult:
    conn.exec_driver_sql(statement, execution_options={"no_parameters": True})
    return _applied(object_type, name, statement)


def _applied(object_type: SchemaObjectType, name: str, statement: str) -> DDLResult:
    log.info("ddl_applied", object_type=object_type.value, name=name)
    return DDLResult(
        outcome=DDLOutcome.APPLIED,
        object_type=object_type,
        name=name,
        statement=statement,
    )


def _skipped(object_type: SchemaObjectType, name: str) -> DDLResult:
    log.debug("ddl_skipped", object_type=object_type.value, name=name)
    return DDLResult(outcome=DDLOutcome.SKIPPED, object_type=object_type, name=name)

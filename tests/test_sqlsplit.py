"""Tests for SQL statement splitting."""

from schemaledger.sqlsplit import (
    is_transaction_control,
    split_statements,
    strip_comments,
    strip_transaction_control,
)


class TestSplitStatements:
    """Tests for cutting migration bodies on top-level semicolons."""

    def test_simple_statements(self) -> None:
        """Each semicolon-terminated statement comes back on its own."""
        sql = "CREATE TABLE a (id INTEGER);\nCREATE TABLE b (id INTEGER);\n"
        assert split_statements(sql) == [
            "CREATE TABLE a (id INTEGER)",
            "CREATE TABLE b (id INTEGER)",
        ]

    def test_last_statement_without_semicolon(self) -> None:
        """A trailing statement without a semicolon is kept."""
        assert split_statements("SELECT 1; SELECT 2") == ["SELECT 1", "SELECT 2"]

    def test_semicolon_in_string_literal(self) -> None:
        """Semicolons inside quotes don't split, doubled quotes don't end the literal."""
        sql = "INSERT INTO t VALUES ('a;b', 'it''s; fine'); SELECT 1;"
        assert split_statements(sql) == [
            "INSERT INTO t VALUES ('a;b', 'it''s; fine')",
            "SELECT 1",
        ]

    def test_semicolon_in_quoted_identifier(self) -> None:
        """Double-quoted identifiers are opaque."""
        sql = 'CREATE TABLE "odd;name" (id INTEGER);'
        assert split_statements(sql) == ['CREATE TABLE "odd;name" (id INTEGER)']

    def test_comments_are_not_split(self) -> None:
        """Semicolons in comments are ignored; comment-only chunks are dropped."""
        sql = (
            "-- leading comment; still a comment\n"
            "CREATE TABLE a (id INTEGER); /* block; comment */\n"
            "-- trailing comment only\n"
        )
        assert split_statements(sql) == [
            "-- leading comment; still a comment\nCREATE TABLE a (id INTEGER)"
        ]

    def test_dollar_quoted_do_block(self) -> None:
        """A PostgreSQL DO block with inner semicolons is one statement."""
        sql = """
DO $$
BEGIN
    IF NOT EXISTS (SELECT 1 FROM pg_tables WHERE tablename = 'users') THEN
        CREATE TABLE users (id SERIAL PRIMARY KEY);
    END IF;
END $$;
CREATE INDEX ix_users_id ON users (id);
"""
        statements = split_statements(sql)
        assert len(statements) == 2
        assert statements[0].startswith("DO $$")
        assert statements[0].endswith("END $$")
        assert statements[1] == "CREATE INDEX ix_users_id ON users (id)"

    def test_tagged_dollar_quote(self) -> None:
        """Tagged dollar quotes ($fn$) only close on the same tag."""
        sql = (
            "CREATE FUNCTION f() RETURNS text AS $fn$ SELECT '$$;'; $fn$ LANGUAGE sql;"
            "SELECT 1;"
        )
        statements = split_statements(sql)
        assert len(statements) == 2
        assert statements[1] == "SELECT 1"

    def test_sqlite_trigger_body(self) -> None:
        """A CREATE TRIGGER ... BEGIN ... END body stays in one statement."""
        sql = """
CREATE TRIGGER trg_touch AFTER UPDATE ON t
BEGIN
    UPDATE t SET n = CASE WHEN n IS NULL THEN 0 ELSE n + 1 END WHERE id = NEW.id;
    SELECT 1;
END;
CREATE TABLE z (id INTEGER);
"""
        statements = split_statements(sql)
        assert len(statements) == 2
        assert statements[0].startswith("CREATE TRIGGER trg_touch")
        assert statements[0].endswith("END")
        assert statements[1] == "CREATE TABLE z (id INTEGER)"

    def test_empty_input(self) -> None:
        """Whitespace and stray semicolons yield nothing."""
        assert split_statements("  ;\n ; ") == []


class TestTransactionControl:
    """Tests for dropping file-level BEGIN/COMMIT."""

    def test_recognises_transaction_statements(self) -> None:
        """Common spellings are detected regardless of case."""
        for statement in [
            "BEGIN",
            "begin transaction",
            "BEGIN WORK",
            "BEGIN IMMEDIATE",
            "START TRANSACTION",
            "COMMIT",
            "commit work",
            "END",
            "-- wrap\nBEGIN",
        ]:
            assert is_transaction_control(statement), statement

    def test_ignores_real_statements(self) -> None:
        """DDL and DML are not treated as transaction control."""
        for statement in ["CREATE TABLE begin_log (id INTEGER)", "SELECT 1", "ROLLBACK"]:
            assert not is_transaction_control(statement), statement

    def test_strip_wrapped_file(self) -> None:
        """A BEGIN; ... COMMIT; file reduces to its body."""
        statements = split_statements("BEGIN;\nCREATE TABLE a (id INTEGER);\nCOMMIT;\n")
        assert strip_transaction_control(statements) == ["CREATE TABLE a (id INTEGER)"]


def test_strip_comments_keeps_quoted_dashes() -> None:
    """Comment markers inside string literals survive."""
    assert strip_comments("SELECT '--not a comment' -- real comment") == (
        "SELECT '--not a comment' "
    )

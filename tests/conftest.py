"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from schemaledger.config import Config
from schemaledger.database import get_engine


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    """Provide an empty migrations directory."""
    directory = tmp_path / "migrations"
    directory.mkdir()
    return directory


@pytest.fixture
def test_config(tmp_path: Path, migrations_dir: Path) -> Config:
    """Create a test configuration with a temp SQLite database."""
    return Config(
        database_url=f"sqlite:///{tmp_path / 'data' / 'test.db'}",
        migrations_dir=migrations_dir,
    )


@pytest.fixture
def engine(test_config: Config):
    """Create a test database engine (no tables yet)."""
    eng = get_engine(test_config)
    yield eng
    eng.dispose()


@pytest.fixture
def write_migration(migrations_dir: Path):
    """Write a migration file into the migrations directory."""

    def _write(name: str, body: str) -> Path:
        path = migrations_dir / name
        path.write_text(body, encoding="utf-8")
        return path

    return _write


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch) -> None:
    """Keep shell environment overrides out of every test."""
    for name in [
        "SCHEMALEDGER_DATABASE_URL",
        "DATABASE_URL",
        "SCHEMALEDGER_MIGRATIONS_DIR",
        "SCHEMALEDGER_LOG_LEVEL",
        "SCHEMALEDGER_LOG_JSON",
    ]:
        monkeypatch.delenv(name, raising=False)

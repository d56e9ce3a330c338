"""Configuration loading and validation for schemaledger."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator


class RunnerConfig(BaseModel):
    """Migration runner behaviour."""

    verify_checksums: bool = True
    lock_key: int | None = None  # Advisory lock key; derived from the ledger table name when unset
    lock_owner: str | None = None

    @field_validator("lock_key")
    @classmethod
    def validate_lock_key(cls, v: int | None) -> int | None:
        """Validate lock_key fits a signed 64-bit advisory lock key."""
        if v is not None and not (-(2**63) <= v < 2**63):
            raise ValueError("lock_key must fit in a signed 64-bit integer")
        return v


class Config(BaseModel):
    """Root configuration for schemaledger."""

    database_url: str = "sqlite:///data/schemaledger.db"
    migrations_dir: Path = Path("migrations")
    log_level: str = "INFO"
    log_json: bool = True

    runner: RunnerConfig = Field(default_factory=RunnerConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log_level is valid."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database_url looks like an SQLAlchemy URL."""
        if "://" not in v:
            raise ValueError("database_url must be an SQLAlchemy URL, e.g. postgresql+psycopg://...")
        return v

    @classmethod
    def load(cls, config_path: Path | str = Path("schemaledger.yaml")) -> "Config":
        """Load configuration from YAML file with env var overlay.

        Args:
            config_path: Path to YAML configuration file.

        Returns:
            Validated Config instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config is invalid.
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

        return cls.model_validate(apply_env_overrides(yaml_config))

    @classmethod
    def load_or_default(cls, config_path: Path | str | None = None) -> "Config":
        """Load configuration, falling back to defaults if file not found.

        Environment overrides apply to the defaults as well.

        Args:
            config_path: Optional path to YAML configuration file.

        Returns:
            Config instance (from file or defaults).
        """
        if config_path is None:
            for path in [Path("schemaledger.yaml"), Path("schemaledger.yml")]:
                if path.exists():
                    return cls.load(path)
            return cls.model_validate(apply_env_overrides({}))

        try:
            return cls.load(config_path)
        except FileNotFoundError:
            return cls.model_validate(apply_env_overrides({}))


def apply_env_overrides(raw: dict) -> dict:
    """Overlay SCHEMALEDGER_* environment variables on raw config data."""
    raw = dict(raw)

    database_url = os.environ.get("SCHEMALEDGER_DATABASE_URL") or os.environ.get("DATABASE_URL")
    if database_url:
        raw["database_url"] = database_url
    if "SCHEMALEDGER_MIGRATIONS_DIR" in os.environ:
        raw["migrations_dir"] = os.environ["SCHEMALEDGER_MIGRATIONS_DIR"]
    if "SCHEMALEDGER_LOG_LEVEL" in os.environ:
        raw["log_level"] = os.environ["SCHEMALEDGER_LOG_LEVEL"]
    if "SCHEMALEDGER_LOG_JSON" in os.environ:
        raw["log_json"] = os.environ["SCHEMALEDGER_LOG_JSON"].lower() == "true"

    return raw

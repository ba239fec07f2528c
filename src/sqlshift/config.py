"""Configuration loading and validation for sqlshift."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = "sqlite:///sqlshift.db"
    table: str = "schema_version"

    @field_validator("table")
    @classmethod
    def validate_table(cls, v: str) -> str:
        """Validate the version table name is a plain identifier."""
        if not v.replace("_", "").isalnum() or v[0].isdigit():
            raise ValueError(f"table must be a plain SQL identifier, got: {v!r}")
        return v


class DiagnosticsConfig(BaseModel):
    """Script failure rendering."""

    context_lines: int = Field(5, ge=0)


class Config(BaseModel):
    """Root configuration for sqlshift."""

    log_level: str = "INFO"
    log_json: bool = True
    installed_by: str | None = None  # Defaults to the OS user

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    diagnostics: DiagnosticsConfig = Field(default_factory=DiagnosticsConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log_level is valid."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @classmethod
    def load(cls, config_path: Path | str = Path("sqlshift.yaml")) -> "Config":
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

        return cls.model_validate(_apply_env_overrides(yaml_config))

    @classmethod
    def load_or_default(cls, config_path: Path | str | None = None) -> "Config":
        """Load configuration, falling back to defaults if file not found.

        Environment overrides apply to the defaults too.
        """
        if config_path is None:
            for path in [Path("sqlshift.yaml"), Path("sqlshift.yml")]:
                if path.exists():
                    return cls.load(path)
            return cls.model_validate(_apply_env_overrides({}))

        try:
            return cls.load(config_path)
        except FileNotFoundError:
            return cls.model_validate(_apply_env_overrides({}))


def _apply_env_overrides(raw: dict) -> dict:
    if "SQLSHIFT_DATABASE_URL" in os.environ:
        raw.setdefault("database", {})["url"] = os.environ["SQLSHIFT_DATABASE_URL"]
    if "SQLSHIFT_LOG_LEVEL" in os.environ:
        raw["log_level"] = os.environ["SQLSHIFT_LOG_LEVEL"]
    if "SQLSHIFT_LOG_JSON" in os.environ:
        raw["log_json"] = os.environ["SQLSHIFT_LOG_JSON"].lower() == "true"
    return raw

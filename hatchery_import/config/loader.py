from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DEFAULT_SAMPLE_SIZE,
    DEFAULT_TIMEOUT_SECONDS,
    AppConfig,
    DatabaseConfig,
)

"""Config loader.

- Load YAML (default config/import.yml)
- Validate against the bundled JSON schema (import_schema.json)
- Apply defaults for missing keys
A missing config file is not an error for the CLI; it falls back to
``AppConfig()`` defaults through ``load_config_or_default``.
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
    "load_config_or_default",
]

DEFAULT_CONFIG_PATH = Path("config/import.yml")
SCHEMA_PATH = Path(__file__).parent / "import_schema.json"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the bundled JSON schema.

    Raises:
        ConfigError: schema file missing / not JSON, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        raise ConfigError(f"config validation failed{' at ' + where if where else ''}: {e.message}") from e


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    sentinels = data.get("null_sentinels")
    return AppConfig(
        skip_duplicates=data.get("skip_duplicates", True),
        create_missing_entities=data.get("create_missing_entities", False),
        sample_size=data.get("sample_size", DEFAULT_SAMPLE_SIZE),
        timeout_seconds=float(data.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
        default_values={k: dict(v) for k, v in (data.get("default_values") or {}).items()},
        null_sentinels=frozenset(s.strip().upper() for s in sentinels) if sentinels is not None else None,
        column_aliases={
            rt: {field: list(aliases) for field, aliases in fields.items()}
            for rt, fields in (data.get("column_aliases") or {}).items()
        },
        error_log_dir=data.get("error_log_dir", "./logs"),
        database=db,
    )


def load_config_or_default(path: Path | None) -> AppConfig:
    """Explicit paths must exist; the default path may be absent."""
    if path is not None:
        return load_config(path)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return AppConfig()

"""
Configuration management for synclease.

Loads config.yaml from the synclease home directory:
- $SYNCLEASE_HOME if set
- ~/.config/synclease otherwise

An optional env_file (dotenv format) is loaded into the process
environment so job modules can read their credentials from it.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from synclease.errors import ConfigurationError

STORE_TYPES = ("memory", "sqlite")
ELIGIBILITY_TYPES = ("always", "interval")
LOG_FORMATS = ("pretty", "structured")


class ConfigError(ConfigurationError):
    """Configuration file validation error."""
    pass


def get_synclease_home() -> Path:
    """Directory holding config.yaml and .env."""
    return Path(os.environ.get("SYNCLEASE_HOME", "~/.config/synclease")).expanduser()


@dataclass
class EntityConfig:
    """One entry of the ``entities`` list."""
    name: str
    job: str
    schema_version: Optional[int] = None
    lease_seconds: Optional[float] = None
    parameters: Optional[dict[str, Any]] = None
    eligibility: dict[str, Any] = field(default_factory=lambda: {"type": "interval", "seconds": 86400})

    @classmethod
    def from_dict(cls, data: Any, index: int) -> "EntityConfig":
        if not isinstance(data, dict):
            raise ConfigError(f"entities[{index}]: expected a mapping, got {type(data).__name__}")
        for required in ("name", "job"):
            if not data.get(required):
                raise ConfigError(f"entities[{index}]: missing '{required}'")

        schema_version = data.get("schema_version")
        if schema_version is not None and (
            not isinstance(schema_version, int) or isinstance(schema_version, bool)
        ):
            raise ConfigError(f"Entity {data['name']}: schema_version must be an integer")

        lease_seconds = data.get("lease_seconds")
        if lease_seconds is not None:
            lease_seconds = _positive_number(lease_seconds, f"Entity {data['name']}: lease_seconds")

        parameters = data.get("parameters")
        if parameters is not None and not isinstance(parameters, dict):
            raise ConfigError(f"Entity {data['name']}: parameters must be a mapping")

        eligibility = data.get("eligibility") or {"type": "interval", "seconds": 86400}
        if not isinstance(eligibility, dict):
            raise ConfigError(f"Entity {data['name']}: eligibility must be a mapping")
        if eligibility.get("type", "interval") not in ELIGIBILITY_TYPES:
            raise ConfigError(
                f"Entity {data['name']}: eligibility type must be one of {ELIGIBILITY_TYPES}, "
                f"got {eligibility.get('type')!r}"
            )

        return cls(
            name=data["name"],
            job=data["job"],
            schema_version=schema_version,
            lease_seconds=lease_seconds,
            parameters=parameters,
            eligibility=eligibility,
        )


@dataclass
class SyncleaseConfig:
    """
    Parsed config.yaml.

    Attributes:
        machine_id: leased_by value (host name when unset)
        default_lease_seconds: Lease length for entities without an override
        store: "memory" or "sqlite"
        sqlite_path: Database file for the sqlite store
        check_interval_seconds: Period of the watch loop
        startup_delay_seconds: Delay before the first watch tick
        max_workers: Thread pool size for sync passes (sequential when unset)
        log_level / log_format / log_file: Logging setup
        entity_provider: Optional 'module:attr' of an EntityProvider
        jobs: Sync identifier -> 'module:attr' of the job
        entities: Statically configured entities
        env_file: Optional dotenv file loaded into the environment
    """
    machine_id: Optional[str] = None
    default_lease_seconds: float = 86400
    store: str = "sqlite"
    sqlite_path: str = "~/.config/synclease/synclease.db"
    check_interval_seconds: float = 300
    startup_delay_seconds: float = 0
    max_workers: Optional[int] = None
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    entity_provider: Optional[str] = None
    jobs: dict[str, str] = field(default_factory=dict)
    entities: list[EntityConfig] = field(default_factory=list)
    env_file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncleaseConfig":
        """
        Build and validate a config from parsed YAML.

        Raises:
            ConfigError: On unknown store types, non-positive durations or
                malformed jobs/entities sections
        """
        cfg = cls()

        for key in ("machine_id", "sqlite_path", "log_file", "entity_provider", "env_file"):
            if data.get(key) is not None:
                setattr(cfg, key, str(data[key]))

        store = data.get("store", cfg.store)
        if store not in STORE_TYPES:
            raise ConfigError(f"store must be one of {STORE_TYPES}, got {store!r}")
        cfg.store = store

        if "default_lease_seconds" in data:
            cfg.default_lease_seconds = _positive_number(
                data["default_lease_seconds"], "default_lease_seconds"
            )
        if "check_interval_seconds" in data:
            cfg.check_interval_seconds = _positive_number(
                data["check_interval_seconds"], "check_interval_seconds"
            )
        if "startup_delay_seconds" in data:
            delay = data["startup_delay_seconds"]
            if not isinstance(delay, (int, float)) or isinstance(delay, bool) or delay < 0:
                raise ConfigError(f"startup_delay_seconds must be >= 0, got {delay!r}")
            cfg.startup_delay_seconds = delay

        max_workers = data.get("max_workers")
        if max_workers is not None:
            if not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1:
                raise ConfigError(f"max_workers must be a positive integer, got {max_workers!r}")
            cfg.max_workers = max_workers

        cfg.log_level = str(data.get("log_level", cfg.log_level)).upper()
        log_format = data.get("log_format", cfg.log_format)
        if log_format not in LOG_FORMATS:
            raise ConfigError(f"log_format must be one of {LOG_FORMATS}, got {log_format!r}")
        cfg.log_format = log_format

        jobs = data.get("jobs") or {}
        if not isinstance(jobs, dict):
            raise ConfigError("jobs must be a mapping of sync id to 'module:attr'")
        cfg.jobs = {str(sync_id): str(path) for sync_id, path in jobs.items()}

        entities = data.get("entities") or []
        if not isinstance(entities, list):
            raise ConfigError("entities must be a list")
        cfg.entities = [EntityConfig.from_dict(item, i) for i, item in enumerate(entities)]

        return cfg


def _positive_number(value: Any, name: str) -> float:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        raise ConfigError(f"{name} must be a positive number, got {value!r}")
    return value


def load_config(path: Optional[Path] = None) -> SyncleaseConfig:
    """
    Load config.yaml and its env_file.

    Args:
        path: Explicit config file (default: <synclease home>/config.yaml)

    Returns:
        SyncleaseConfig

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the file is not valid YAML or fails validation
    """
    config_path = Path(path) if path else get_synclease_home() / "config.yaml"
    if not config_path.exists():
        raise FileNotFoundError(
            f"synclease config.yaml not found at {config_path}. Run 'synclease init' to create one."
        )

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    cfg = SyncleaseConfig.from_dict(data)

    if cfg.env_file:
        env_path = Path(cfg.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    return cfg

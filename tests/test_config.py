import os
from datetime import timedelta
from pathlib import Path

import pytest
import yaml

from synclease.config import (
    ConfigError,
    EntityConfig,
    SyncleaseConfig,
    get_synclease_home,
    load_config,
)


def _write_config(home: Path, data: dict) -> Path:
    home.mkdir(parents=True, exist_ok=True)
    config_path = home / "config.yaml"
    config_path.write_text(yaml.dump(data))
    return config_path


def test_get_synclease_home_default(monkeypatch):
    monkeypatch.delenv("SYNCLEASE_HOME", raising=False)
    assert get_synclease_home() == Path("~/.config/synclease").expanduser()


def test_get_synclease_home_env_var(monkeypatch, tmp_path):
    custom_home = tmp_path / "custom_home"
    monkeypatch.setenv("SYNCLEASE_HOME", str(custom_home))
    assert get_synclease_home() == custom_home


def test_load_config_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("SYNCLEASE_HOME", str(tmp_path))
    with pytest.raises(FileNotFoundError, match="synclease config.yaml not found"):
        load_config()


def test_load_config_defaults_for_empty_file(monkeypatch, tmp_path):
    monkeypatch.setenv("SYNCLEASE_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("")

    cfg = load_config()
    assert cfg == SyncleaseConfig()
    assert cfg.store == "sqlite"
    assert cfg.default_lease_seconds == 86400


def test_load_config_valid(monkeypatch, tmp_path):
    monkeypatch.setenv("SYNCLEASE_HOME", str(tmp_path))
    _write_config(tmp_path, {
        "machine_id": "worker-1",
        "store": "memory",
        "default_lease_seconds": 600,
        "check_interval_seconds": 60,
        "startup_delay_seconds": 5,
        "max_workers": 4,
        "log_level": "debug",
        "log_format": "structured",
        "jobs": {"orders": "sample_jobs:OrderSync"},
        "entities": [
            {
                "name": "Orders",
                "job": "orders",
                "schema_version": 2,
                "lease_seconds": 120,
                "parameters": {"tenant": "acme"},
                "eligibility": {"type": "always"},
            },
        ],
    })

    cfg = load_config()
    assert isinstance(cfg, SyncleaseConfig)
    assert cfg.machine_id == "worker-1"
    assert cfg.store == "memory"
    assert cfg.default_lease_seconds == 600
    assert cfg.max_workers == 4
    assert cfg.log_level == "DEBUG"
    assert cfg.jobs == {"orders": "sample_jobs:OrderSync"}
    assert cfg.entities == [
        EntityConfig(
            name="Orders",
            job="orders",
            schema_version=2,
            lease_seconds=120,
            parameters={"tenant": "acme"},
            eligibility={"type": "always"},
        )
    ]


def test_load_config_explicit_path(tmp_path):
    config_path = _write_config(tmp_path / "elsewhere", {"store": "memory"})
    assert load_config(config_path).store == "memory"


def test_load_config_with_env_file(monkeypatch, tmp_path):
    monkeypatch.setenv("SYNCLEASE_HOME", str(tmp_path))
    env_file = tmp_path / ".env.test"
    env_file.write_text("SYNCLEASE_TEST_VAR=loaded_from_env")
    _write_config(tmp_path, {"env_file": str(env_file)})

    # Pre-clean env var
    monkeypatch.delenv("SYNCLEASE_TEST_VAR", raising=False)

    load_config()
    assert os.environ.get("SYNCLEASE_TEST_VAR") == "loaded_from_env"
    monkeypatch.delenv("SYNCLEASE_TEST_VAR")


def test_load_config_missing_env_file_is_ignored(monkeypatch, tmp_path):
    monkeypatch.setenv("SYNCLEASE_HOME", str(tmp_path))
    _write_config(tmp_path, {"env_file": str(tmp_path / "missing.env")})
    assert load_config().env_file == str(tmp_path / "missing.env")


def test_invalid_yaml(monkeypatch, tmp_path):
    monkeypatch.setenv("SYNCLEASE_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("store: [unclosed")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config()


def test_non_mapping_config(monkeypatch, tmp_path):
    monkeypatch.setenv("SYNCLEASE_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("- just\n- a list\n")
    with pytest.raises(ConfigError, match="must contain a mapping"):
        load_config()


@pytest.mark.parametrize("data, match", [
    ({"store": "redis"}, "store must be one of"),
    ({"default_lease_seconds": 0}, "default_lease_seconds must be a positive number"),
    ({"check_interval_seconds": -5}, "check_interval_seconds must be a positive number"),
    ({"startup_delay_seconds": -1}, "startup_delay_seconds must be >= 0"),
    ({"max_workers": 0}, "max_workers must be a positive integer"),
    ({"log_format": "xml"}, "log_format must be one of"),
    ({"jobs": ["orders"]}, "jobs must be a mapping"),
    ({"entities": {"name": "Orders"}}, "entities must be a list"),
    ({"entities": [{"job": "orders"}]}, "missing 'name'"),
    ({"entities": [{"name": "Orders"}]}, "missing 'job'"),
    ({"entities": ["Orders"]}, "expected a mapping"),
    ({"entities": [{"name": "Orders", "job": "o", "schema_version": "2"}]}, "schema_version"),
    ({"entities": [{"name": "Orders", "job": "o", "lease_seconds": 0}]}, "lease_seconds"),
    ({"entities": [{"name": "Orders", "job": "o", "parameters": [1]}]}, "parameters must be a mapping"),
    ({"entities": [{"name": "Orders", "job": "o", "eligibility": {"type": "cron"}}]}, "eligibility type"),
])
def test_validation_errors(data, match):
    with pytest.raises(ConfigError, match=match):
        SyncleaseConfig.from_dict(data)


def test_entity_default_eligibility_is_daily():
    entity = EntityConfig.from_dict({"name": "Orders", "job": "orders"}, 0)
    assert entity.eligibility == {"type": "interval", "seconds": 86400}
    assert timedelta(seconds=entity.eligibility["seconds"]) == timedelta(days=1)

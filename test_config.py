#!/usr/bin/env python3
"""
Test explicit configuration requirements.
"""

import copy
import os
import tempfile

import pytest
import yaml

from chatstream.config import BASE_URL_ENV, Configuration

VALID_CONFIG = {
    "backend": {
        "base_url": "http://localhost:8000",
        "app_name": "app",
        "user_id": "u_999",
        "session_path": "/apps/{app_name}/users/{user_id}/sessions/{session_id}",
        "run_path": "/run_sse",
        "connect_timeout": 10.0,
        "read_timeout": 300.0,
    },
    "retry": {
        "max_attempts": 10,
        "max_duration": 120.0,
        "initial_delay": 1.0,
        "max_delay": 5.0,
    },
    "health": {"path": "/docs", "max_attempts": 60, "interval": 2.0},
    "streaming": {"log_preview_chars": 200},
    "chat_store": {"path": "chat_sessions.db", "clear_on_startup": False},
    "logging": {"level": "info"},
}


def _write_config(config) -> str:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(config, f)
        return f.name


@pytest.fixture
def config_file():
    paths = []

    def make(config=None):
        path = _write_config(VALID_CONFIG if config is None else config)
        paths.append(path)
        return path

    yield make
    for path in paths:
        os.unlink(path)


@pytest.fixture(autouse=True)
def no_base_url_override(monkeypatch):
    monkeypatch.delenv(BASE_URL_ENV, raising=False)


def test_default_config_file_loads():
    """The packaged config.yaml passes validation."""
    config = Configuration()
    assert config.get_backend_config()["run_path"] == "/run_sse"
    assert config.get_retry_config()["max_attempts"] == 10
    assert config.get_health_config()["max_attempts"] == 60


def test_backend_config(config_file):
    backend = Configuration(config_file()).get_backend_config()
    assert backend["base_url"] == "http://localhost:8000"
    assert backend["read_timeout"] == 300.0


def test_base_url_env_override(config_file, monkeypatch):
    monkeypatch.setenv(BASE_URL_ENV, "http://agents.internal:9000")
    config = Configuration(config_file())
    assert config.get_backend_config()["base_url"] == "http://agents.internal:9000"
    # The loaded YAML is not mutated by the override
    assert config.get_config_dict()["backend"]["base_url"] == "http://localhost:8000"


@pytest.mark.parametrize("key", ["app_name", "run_path", "read_timeout"])
def test_backend_keys_required(config_file, key):
    config = copy.deepcopy(VALID_CONFIG)
    del config["backend"][key]
    with pytest.raises(ValueError, match=f"backend.{key} must be explicitly configured"):
        Configuration(config_file(config)).get_backend_config()


def test_session_path_needs_placeholder(config_file):
    config = copy.deepcopy(VALID_CONFIG)
    config["backend"]["session_path"] = "/sessions"
    with pytest.raises(ValueError, match="session_id"):
        Configuration(config_file(config)).get_backend_config()


def test_retry_validation(config_file):
    config = copy.deepcopy(VALID_CONFIG)
    config["retry"]["max_delay"] = 0.5
    with pytest.raises(ValueError, match="max_delay"):
        Configuration(config_file(config)).get_retry_config()

    config = copy.deepcopy(VALID_CONFIG)
    del config["retry"]["max_duration"]
    with pytest.raises(ValueError, match="retry.max_duration"):
        Configuration(config_file(config)).get_retry_config()


def test_health_validation(config_file):
    config = copy.deepcopy(VALID_CONFIG)
    config["health"]["max_attempts"] = 0
    with pytest.raises(ValueError, match="health.max_attempts"):
        Configuration(config_file(config)).get_health_config()


def test_streaming_defaults(config_file):
    config = copy.deepcopy(VALID_CONFIG)
    del config["streaming"]
    assert Configuration(config_file(config)).get_streaming_config() == {
        "log_preview_chars": 200,
    }


def test_logging_level_normalized(config_file):
    assert Configuration(config_file()).get_logging_config()["level"] == "INFO"

    config = copy.deepcopy(VALID_CONFIG)
    config["logging"]["level"] = "LOUD"
    with pytest.raises(ValueError, match="logging.level"):
        Configuration(config_file(config)).get_logging_config()


def test_chat_store_requires_path(config_file):
    config = copy.deepcopy(VALID_CONFIG)
    config["chat_store"] = {}
    with pytest.raises(ValueError, match="chat_store.path"):
        Configuration(config_file(config)).get_chat_store_config()


def test_non_mapping_yaml_rejected(config_file):
    with pytest.raises(ValueError, match="YAML dict"):
        Configuration(config_file(["not", "a", "dict"]))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""Configuration management for the chat client."""

import os
from typing import Any

import yaml
from dotenv import load_dotenv

BASE_URL_ENV = "CHATSTREAM_BASE_URL"
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Configuration:
    """Manages configuration and environment variables for the chat client."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for overrides
        self._config = self._load_yaml_config(config_path)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(config_path: str | None = None) -> dict[str, Any]:
        """Load configuration from YAML file."""
        if config_path is None:
            config_path = os.path.join(os.path.dirname(__file__), "config.yaml")
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    @staticmethod
    def _require(section: dict[str, Any], keys: list[str], where: str) -> None:
        for key in keys:
            if key not in section:
                raise ValueError(
                    f"{where}.{key} must be explicitly configured in config.yaml"
                )

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary.

        Returns:
            The complete configuration dictionary.
        """
        return self._config

    @property
    def backend_base_url(self) -> str:
        """Backend base URL; the environment overrides the YAML value.

        Returns:
            The base URL as a string.

        Raises:
            ValueError: If no base URL is configured anywhere.
        """
        base_url = os.getenv(BASE_URL_ENV) or self._config.get("backend", {}).get(
            "base_url"
        )
        if not base_url:
            raise ValueError(
                f"backend.base_url must be configured in config.yaml "
                f"or through {BASE_URL_ENV}"
            )
        return base_url

    def get_backend_config(self) -> dict[str, Any]:
        """Get backend connection configuration.

        Returns:
            Backend configuration dictionary with validated values.

        Raises:
            ValueError: If required backend parameters are missing or invalid.
        """
        backend_config = self._config.get("backend", {})
        self._require(
            backend_config,
            ["app_name", "user_id", "session_path", "run_path",
             "connect_timeout", "read_timeout"],
            "backend",
        )

        if "{session_id}" not in backend_config["session_path"]:
            raise ValueError("backend.session_path must contain {session_id}")
        if backend_config["connect_timeout"] <= 0:
            raise ValueError("backend.connect_timeout must be positive")
        if backend_config["read_timeout"] <= 0:
            raise ValueError("backend.read_timeout must be positive")

        # Create new dictionary without mutating the original
        return {**backend_config, "base_url": self.backend_base_url}

    def get_retry_config(self) -> dict[str, Any]:
        """Get retry/backoff configuration.

        Returns:
            Retry configuration dictionary with validated values.

        Raises:
            ValueError: If required retry parameters are missing or invalid.
        """
        retry_config = self._config.get("retry", {})
        self._require(
            retry_config,
            ["max_attempts", "max_duration", "initial_delay", "max_delay"],
            "retry",
        )

        if not isinstance(retry_config["max_attempts"], int) or (
            retry_config["max_attempts"] < 1
        ):
            raise ValueError("retry.max_attempts must be a positive integer")
        if retry_config["max_duration"] <= 0:
            raise ValueError("retry.max_duration must be positive")
        if retry_config["initial_delay"] < 0:
            raise ValueError("retry.initial_delay must be non-negative")
        if retry_config["max_delay"] < retry_config["initial_delay"]:
            raise ValueError("retry.max_delay must be >= retry.initial_delay")

        return {**retry_config}

    def get_health_config(self) -> dict[str, Any]:
        """Get readiness probe configuration.

        Returns:
            Health configuration dictionary with validated values.

        Raises:
            ValueError: If required health parameters are missing or invalid.
        """
        health_config = self._config.get("health", {})
        self._require(health_config, ["path", "max_attempts", "interval"], "health")

        if health_config["max_attempts"] < 1:
            raise ValueError("health.max_attempts must be at least 1")
        if health_config["interval"] < 0:
            raise ValueError("health.interval must be non-negative")

        return {**health_config}

    def get_streaming_config(self) -> dict[str, Any]:
        """Get streaming configuration.

        Returns:
            Streaming configuration dictionary.
        """
        streaming_config = self._config.get("streaming", {})
        return {
            "log_preview_chars": streaming_config.get("log_preview_chars", 200),
        }

    def get_chat_store_config(self) -> dict[str, Any]:
        """Get chat store configuration.

        Returns:
            Chat store configuration dictionary.

        Raises:
            ValueError: If the database path is missing.
        """
        store_config = self._config.get("chat_store", {})
        self._require(store_config, ["path"], "chat_store")
        return {**store_config}

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration.

        Returns:
            Logging configuration dictionary.
        """
        logging_config = {"level": "INFO", **self._config.get("logging", {})}
        level = str(logging_config["level"]).upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {VALID_LOG_LEVELS}")
        logging_config["level"] = level
        return logging_config

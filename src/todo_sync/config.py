"""Configuration management for the todo sync client."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError


logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:3000"
SESSION_BACKENDS = ("file", "keyring", "memory")


@dataclass
class TransportConfig:
    """Per-client request policy: timeout and retry behavior."""

    base_url: str = DEFAULT_API_URL
    timeout: float = 30.0
    max_retries: int = 2
    retryable_status_codes: List[int] = field(
        default_factory=lambda: [408, 413, 429, 500, 502, 503, 504]
    )
    retry_methods: List[str] = field(
        default_factory=lambda: ["GET", "PUT", "HEAD", "DELETE", "OPTIONS", "TRACE"]
    )
    backoff_factor: float = 0.3
    max_retry_after: float = 10.0

    def __post_init__(self):
        if self.timeout <= 0:
            raise ConfigError(f"Timeout must be positive, got {self.timeout}")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries cannot be negative, got {self.max_retries}")
        self.retry_methods = [method.upper() for method in self.retry_methods]
        if "POST" in self.retry_methods:
            raise ConfigError("POST requests are never retried")


@dataclass
class ClientConfig:
    """Global configuration model for the todo sync client."""

    # API
    api_url: str = DEFAULT_API_URL
    timeout: float = 30.0
    max_retries: int = 2
    retryable_status_codes: List[int] = field(
        default_factory=lambda: [408, 413, 429, 500, 502, 503, 504]
    )
    backoff_factor: float = 0.3

    # Cache windows (seconds)
    stale_times: Dict[str, float] = field(
        default_factory=lambda: {"todos": 300.0, "users": 600.0}
    )
    default_stale_time: float = 300.0
    gc_time: float = 600.0

    # Session persistence
    session_backend: str = "file"
    data_dir: str = "~/.todo_sync"

    def __post_init__(self):
        self.data_dir = os.path.expanduser(self.data_dir)
        if self.session_backend not in SESSION_BACKENDS:
            raise ConfigError(
                f"Unknown session backend '{self.session_backend}'",
                description=f"Choose one of: {', '.join(SESSION_BACKENDS)}",
            )
        if self.gc_time < 0 or self.default_stale_time < 0:
            raise ConfigError("Cache windows cannot be negative")

    def transport_config(self) -> TransportConfig:
        """Build the transport policy object for this configuration."""
        return TransportConfig(
            base_url=self.api_url,
            timeout=self.timeout,
            max_retries=self.max_retries,
            retryable_status_codes=list(self.retryable_status_codes),
            backoff_factor=self.backoff_factor,
        )

    def get_session_path(self) -> Path:
        return Path(self.data_dir) / "session.json"

    def to_yaml(self) -> str:
        """Serialize config to YAML."""
        data = {
            "api_url": self.api_url,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
            "retryable_status_codes": self.retryable_status_codes,
            "backoff_factor": self.backoff_factor,
            "stale_times": self.stale_times,
            "default_stale_time": self.default_stale_time,
            "gc_time": self.gc_time,
            "session_backend": self.session_backend,
            "data_dir": self.data_dir,
        }
        return yaml.dump(data, default_flow_style=False)

    @classmethod
    def from_yaml(cls, yaml_str: str, **defaults) -> "ClientConfig":
        """Deserialize config from YAML; ``defaults`` fill keys the file omits."""
        data = yaml.safe_load(yaml_str) or {}
        if not isinstance(data, dict):
            raise ConfigError("Configuration file must contain a mapping")
        try:
            return cls(**{**defaults, **data})
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def get_config_dir() -> Path:
    """Directory holding the config file and persisted session."""
    return Path(os.path.expanduser(os.getenv("TODO_SYNC_HOME", "~/.todo_sync")))


def _apply_env_overrides(config: ClientConfig) -> ClientConfig:
    api_url = os.getenv("TODO_SYNC_API_URL")
    if api_url:
        config.api_url = api_url

    timeout = os.getenv("TODO_SYNC_TIMEOUT")
    if timeout:
        try:
            config.timeout = float(timeout)
        except ValueError:
            raise ConfigError(f"TODO_SYNC_TIMEOUT must be a number, got '{timeout}'")

    backend = os.getenv("TODO_SYNC_SESSION_BACKEND")
    if backend:
        if backend not in SESSION_BACKENDS:
            raise ConfigError(f"Unknown session backend '{backend}'")
        config.session_backend = backend

    return config


def load_config(config_path: Optional[Path] = None) -> ClientConfig:
    """Load configuration from file, falling back to defaults.

    Environment variables override file values.

    Args:
        config_path: Optional explicit path to the YAML file

    Returns:
        ClientConfig instance
    """
    if config_path is None:
        config_path = get_config_dir() / "config.yaml"

    # The session lives next to the config file unless the file says otherwise
    data_dir = str(config_path.parent)
    config = ClientConfig(data_dir=data_dir)
    if config_path.exists():
        config = ClientConfig.from_yaml(config_path.read_text(), data_dir=data_dir)
        logger.debug(f"Loaded configuration from {config_path}")
    else:
        logger.debug(f"No configuration at {config_path}, using defaults")

    return _apply_env_overrides(config)


def save_config(config: ClientConfig, config_path: Optional[Path] = None) -> None:
    """Save configuration to file."""
    if config_path is None:
        config_path = Path(config.data_dir) / "config.yaml"

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(config.to_yaml())
    logger.info(f"Configuration saved to {config_path}")


def config_summary(config: ClientConfig) -> Dict[str, Any]:
    """Flat view of the effective settings, for display."""
    return {
        "api_url": config.api_url,
        "timeout": config.timeout,
        "max_retries": config.max_retries,
        "session_backend": config.session_backend,
        "data_dir": config.data_dir,
    }

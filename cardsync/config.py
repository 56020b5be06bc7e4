"""Configuration loading for cardsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class StorageConfig:
    db_path: str = "~/.cardsync/cardsync.db"
    base_key: str = "cards"


@dataclass
class RemoteConfig:
    """Configuration for the remote key-value backend."""

    backend: str = "none"  # "none", "http" or "memory"
    url: str = ""
    timeout_seconds: float = 10.0
    max_value_length: int = 4096
    max_chunk_size: int = 1500
    chunk_delay_seconds: float = 0.05


@dataclass
class SyncConfig:
    """Configuration for background synchronization."""

    enabled: bool = True
    interval_seconds: float = 10.0
    throttle_seconds: float = 5.0


@dataclass
class Config:
    storage: StorageConfig = field(default_factory=StorageConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with CARDSYNC_ prefix."""
    return os.environ.get(f"CARDSYNC_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Storage overrides
    if db_path := _get_env("DB_PATH"):
        config.storage.db_path = db_path
    if base_key := _get_env("BASE_KEY"):
        config.storage.base_key = base_key

    # Remote overrides
    if backend := _get_env("REMOTE_BACKEND"):
        config.remote.backend = backend.lower()
    if url := _get_env("REMOTE_URL"):
        config.remote.url = url
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout_seconds = float(timeout)
    if chunk_size := _get_env("MAX_CHUNK_SIZE"):
        config.remote.max_chunk_size = int(chunk_size)

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = sync_enabled.lower() in ("true", "1", "yes")
    if interval := _get_env("SYNC_INTERVAL"):
        config.sync.interval_seconds = float(interval)
    if throttle := _get_env("SYNC_THROTTLE"):
        config.sync.throttle_seconds = float(throttle)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse storage config
            if "storage" in data:
                storage_data = data["storage"]
                config.storage = StorageConfig(
                    db_path=storage_data.get("db_path", config.storage.db_path),
                    base_key=storage_data.get("base_key", config.storage.base_key),
                )

            # Parse remote config
            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    backend=remote_data.get("backend", config.remote.backend),
                    url=remote_data.get("url", config.remote.url),
                    timeout_seconds=remote_data.get(
                        "timeout_seconds", config.remote.timeout_seconds
                    ),
                    max_value_length=remote_data.get(
                        "max_value_length", config.remote.max_value_length
                    ),
                    max_chunk_size=remote_data.get(
                        "max_chunk_size", config.remote.max_chunk_size
                    ),
                    chunk_delay_seconds=remote_data.get(
                        "chunk_delay_seconds", config.remote.chunk_delay_seconds
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    interval_seconds=sync_data.get(
                        "interval_seconds", config.sync.interval_seconds
                    ),
                    throttle_seconds=sync_data.get(
                        "throttle_seconds", config.sync.throttle_seconds
                    ),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    if config.remote.max_chunk_size < 1:
        raise ValueError(
            f"remote.max_chunk_size must be >= 1, got {config.remote.max_chunk_size}"
        )

    return config

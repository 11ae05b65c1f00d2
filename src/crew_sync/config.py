"""Configuration management for crew-sync.

Settings come from ``<data_dir>/config.toml`` (if present) and are then
overridden by ``CREWSYNC_*`` environment variables.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_BASE_RETRY_MS = 1_000
DEFAULT_MAX_RETRY_MS = 5 * 60_000


def get_crewsync_dir() -> Path:
    """Get the crew-sync data directory.

    Priority:
    1. CREWSYNC_DIR environment variable
    2. ~/.crewsync/
    """
    env_dir = os.environ.get("CREWSYNC_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".crewsync"


@dataclass(frozen=True)
class SyncConfig:
    """Sync engine configuration."""

    data_dir: Path = field(default_factory=get_crewsync_dir)
    db_name: str = "crewsync.db"

    # Retry backoff
    base_retry_ms: int = DEFAULT_BASE_RETRY_MS
    max_retry_ms: int = DEFAULT_MAX_RETRY_MS

    # Remote hub
    remote_url: str | None = None
    api_token: str | None = None
    request_timeout: float = 30.0
    poll_interval: float = 2.0

    # Hub server
    host: str = "127.0.0.1"
    port: int = 8765
    hub_token: str | None = None

    log_level: str = "WARNING"

    @property
    def db_path(self) -> Path:
        """Path to the local SQLite database."""
        return self.data_dir / self.db_name

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.data_dir / "config.toml"

    def to_dict(self) -> dict[str, Any]:
        return {
            "db_name": self.db_name,
            "retry": {
                "base_retry_ms": self.base_retry_ms,
                "max_retry_ms": self.max_retry_ms,
            },
            "remote": {
                "url": self.remote_url,
                "request_timeout": self.request_timeout,
                "poll_interval": self.poll_interval,
            },
            "server": {"host": self.host, "port": self.port},
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], data_dir: Path | None = None) -> SyncConfig:
        retry = data.get("retry", {})
        remote = data.get("remote", {})
        server = data.get("server", {})
        base_retry = _positive_int(retry.get("base_retry_ms"), DEFAULT_BASE_RETRY_MS)
        max_retry = _positive_int(retry.get("max_retry_ms"), DEFAULT_MAX_RETRY_MS)
        return cls(
            data_dir=data_dir or get_crewsync_dir(),
            db_name=str(data.get("db_name", "crewsync.db")),
            base_retry_ms=base_retry,
            max_retry_ms=max(max_retry, base_retry),
            remote_url=remote.get("url") or None,
            api_token=remote.get("api_token") or None,
            request_timeout=float(remote.get("request_timeout", 30.0)),
            poll_interval=float(remote.get("poll_interval", 2.0)),
            host=str(server.get("host", "127.0.0.1")),
            port=_positive_int(server.get("port"), 8765),
            hub_token=server.get("token") or None,
            log_level=str(data.get("log_level", "WARNING")).upper(),
        )

    @classmethod
    def load(cls, config_path: Path | None = None) -> SyncConfig:
        """Load configuration from TOML, falling back to defaults if the file is absent."""
        if config_path is None:
            data_dir = get_crewsync_dir()
            config_path = data_dir / "config.toml"
        else:
            data_dir = config_path.parent

        if not config_path.exists():
            return cls(data_dir=data_dir)

        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError):
            logger.warning("Unreadable config at %s, using defaults", config_path, exc_info=True)
            return cls(data_dir=data_dir)

        return cls.from_dict(data, data_dir=data_dir)

    def with_env(self) -> SyncConfig:
        """Return a copy with ``CREWSYNC_*`` environment overrides applied."""

        def get_int(key: str, default: int) -> int:
            value = os.getenv(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError:
                return default

        def get_float(key: str, default: float) -> float:
            value = os.getenv(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError:
                return default

        return replace(
            self,
            base_retry_ms=get_int("CREWSYNC_BASE_RETRY_MS", self.base_retry_ms),
            max_retry_ms=get_int("CREWSYNC_MAX_RETRY_MS", self.max_retry_ms),
            remote_url=os.getenv("CREWSYNC_REMOTE_URL", self.remote_url or "") or None,
            api_token=os.getenv("CREWSYNC_API_TOKEN", self.api_token or "") or None,
            request_timeout=get_float("CREWSYNC_REQUEST_TIMEOUT", self.request_timeout),
            poll_interval=get_float("CREWSYNC_POLL_INTERVAL", self.poll_interval),
            host=os.getenv("CREWSYNC_HOST", self.host),
            port=get_int("CREWSYNC_PORT", self.port),
            hub_token=os.getenv("CREWSYNC_HUB_TOKEN", self.hub_token or "") or None,
            log_level=os.getenv("CREWSYNC_LOG_LEVEL", self.log_level).upper(),
        )

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from the default TOML file plus environment variables."""
        return cls.load().with_env()


def _positive_int(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


# Singleton config instance
_config: SyncConfig | None = None


def get_config() -> SyncConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = SyncConfig.from_env()
    return _config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config
    _config = None

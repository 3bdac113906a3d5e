"""Configuration management for the GPU dashboard.

Supports YAML-based configuration with an environment override for the
upstream API base URL.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

API_URL_ENV = "GPU_DASHBOARD_API_URL"
CONFIG_PATH_ENV = "GPU_DASHBOARD_CONFIG"


@dataclass
class ApiConfig:
    """Upstream GPU metrics API settings."""

    base_url: str = "/api"  # Relative bases are joined onto origin
    origin: str = "http://localhost:8080"
    timeout: int = 30  # seconds
    verify_tls: bool = True
    ca_bundle: Optional[str] = None


@dataclass
class PollingConfig:
    """Polling intervals."""

    metrics_interval: int = 30  # seconds, while auto-refresh is on
    health_interval: int = 60  # seconds, always
    auto_refresh: bool = True


@dataclass
class CacheConfig:
    """Query cache lifetimes."""

    stale_time: int = 30  # seconds
    gc_time: int = 300  # seconds


@dataclass
class RetryConfig:
    """Fixed-delay retry settings for one query."""

    retries: int = 3
    delay: float = 1.0


@dataclass
class TableConfig:
    """Table presentation settings."""

    page_size: int = 10


@dataclass
class UIConfig:
    """UI configuration."""

    title: str = "GPU Monitoring Dashboard"
    subtitle: str = "Real-time GPU resources on the cluster"


@dataclass
class ServerConfig:
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 3000
    url_prefix: str = ""


@dataclass
class Config:
    """Main configuration container."""

    api: ApiConfig = field(default_factory=ApiConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    metrics_retry: RetryConfig = field(default_factory=lambda: RetryConfig(retries=3, delay=1.0))
    health_retry: RetryConfig = field(default_factory=lambda: RetryConfig(retries=1, delay=1.0))
    table: TableConfig = field(default_factory=TableConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    ui: UIConfig = field(default_factory=UIConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        # Parse API config
        api_data = data.get("api", {})
        api = ApiConfig(
            base_url=api_data.get("base_url", "/api"),
            origin=api_data.get("origin", "http://localhost:8080"),
            timeout=api_data.get("timeout", 30),
            verify_tls=api_data.get("verify_tls", True),
            ca_bundle=api_data.get("ca_bundle"),
        )

        # Parse polling config
        polling_data = data.get("polling", {})
        polling = PollingConfig(
            metrics_interval=polling_data.get("metrics_interval", 30),
            health_interval=polling_data.get("health_interval", 60),
            auto_refresh=polling_data.get("auto_refresh", True),
        )

        cache_data = data.get("cache", {})
        cache = CacheConfig(
            stale_time=cache_data.get("stale_time", 30),
            gc_time=cache_data.get("gc_time", 300),
        )

        # Parse retry config (per query)
        retry_data = data.get("retry", {})
        metrics_retry_data = retry_data.get("metrics", {})
        health_retry_data = retry_data.get("health", {})
        metrics_retry = RetryConfig(
            retries=metrics_retry_data.get("retries", 3),
            delay=metrics_retry_data.get("delay", 1.0),
        )
        health_retry = RetryConfig(
            retries=health_retry_data.get("retries", 1),
            delay=health_retry_data.get("delay", 1.0),
        )

        table = TableConfig(page_size=data.get("table", {}).get("page_size", 10))

        # Parse server config
        server_data = data.get("server", {})
        server = ServerConfig(
            host=server_data.get("host", "0.0.0.0"),
            port=server_data.get("port", 3000),
            url_prefix=server_data.get("url_prefix", ""),
        )

        ui_data = data.get("ui", {})
        ui = UIConfig(
            title=ui_data.get("title", UIConfig.title),
            subtitle=ui_data.get("subtitle", UIConfig.subtitle),
        )

        return cls(
            api=api,
            polling=polling,
            cache=cache,
            metrics_retry=metrics_retry,
            health_retry=health_retry,
            table=table,
            server=server,
            ui=ui,
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load config from YAML file."""
        if not path.exists():
            return cls()
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """Load config from path or defaults, then apply the API URL env var.

        Checks in order:
        1. Provided path
        2. GPU_DASHBOARD_CONFIG env var
        3. ./configs/config.yaml
        4. ./config.yaml
        5. ~/.gpu_dashboard/config.yaml
        6. Default config
        """
        paths_to_try = []

        if config_path:
            paths_to_try.append(Path(config_path))

        if env_path := os.environ.get(CONFIG_PATH_ENV):
            paths_to_try.append(Path(env_path))

        paths_to_try.extend([
            Path("./configs/config.yaml"),
            Path("./config.yaml"),
            Path.home() / ".gpu_dashboard" / "config.yaml",
        ])

        config = cls()
        for path in paths_to_try:
            if path.exists():
                config = cls.from_yaml(path)
                break

        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Apply environment overrides (an empty value counts as unset)."""
        if api_url := os.environ.get(API_URL_ENV):
            self.api.base_url = api_url

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "api": {
                "base_url": self.api.base_url,
                "origin": self.api.origin,
                "timeout": self.api.timeout,
            },
            "polling": {
                "metrics_interval": self.polling.metrics_interval,
                "health_interval": self.polling.health_interval,
                "auto_refresh": self.polling.auto_refresh,
            },
            "cache": {
                "stale_time": self.cache.stale_time,
                "gc_time": self.cache.gc_time,
            },
            "retry": {
                "metrics": {"retries": self.metrics_retry.retries, "delay": self.metrics_retry.delay},
                "health": {"retries": self.health_retry.retries, "delay": self.health_retry.delay},
            },
            "table": {"page_size": self.table.page_size},
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "url_prefix": self.server.url_prefix,
            },
            "ui": {"title": self.ui.title, "subtitle": self.ui.subtitle},
        }

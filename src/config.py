"""
Configuration module for the Static Pod Config Renderer.

Loads configuration from environment variables. Paths and ownership of the
rendered files are supplied by the host environment; everything else has
sensible defaults for a single-node deployment.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

STORE_BACKENDS = ("memory", "postgres")


@dataclass
class StoreConfig:
    """Resource store backend selection."""

    backend: str = "memory"
    poll_interval: float = 1.0  # seconds, postgres backend only

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        backend = os.getenv("STORE_BACKEND", "memory").lower()
        if backend not in STORE_BACKENDS:
            raise ValueError(
                f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, "
                f"got '{backend}'"
            )

        return cls(
            backend=backend,
            poll_interval=float(os.getenv("STORE_POLL_INTERVAL", "1.0")),
        )


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "config_renderer"
    user: str = "renderer"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 1
    max_pool_size: int = 5

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "config_renderer"),
            user=os.getenv("DB_USER", "renderer"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "1")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "5")),
        )


@dataclass
class RenderConfig:
    """Filesystem layout and ownership of the rendered configuration."""

    apiserver_config_dir: str = "/etc/kubernetes/kube-apiserver"
    apiserver_run_user: int = 65534
    apiserver_run_group: int = 65534
    scheduler_config_dir: str = "/etc/kubernetes/kube-scheduler"
    scheduler_run_user: int = 65534
    scheduler_run_group: int = 65534
    scheduler_secrets_dir: str = "/etc/kubernetes/secrets/kube-scheduler"

    @property
    def scheduler_kubeconfig(self) -> str:
        """Kubeconfig path injected into the scheduler configuration."""
        return os.path.join(self.scheduler_secrets_dir, "kubeconfig")

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        defaults = cls()
        return cls(
            apiserver_config_dir=os.getenv(
                "APISERVER_CONFIG_DIR", defaults.apiserver_config_dir
            ),
            apiserver_run_user=int(
                os.getenv("APISERVER_RUN_USER", str(defaults.apiserver_run_user))
            ),
            apiserver_run_group=int(
                os.getenv("APISERVER_RUN_GROUP", str(defaults.apiserver_run_group))
            ),
            scheduler_config_dir=os.getenv(
                "SCHEDULER_CONFIG_DIR", defaults.scheduler_config_dir
            ),
            scheduler_run_user=int(
                os.getenv("SCHEDULER_RUN_USER", str(defaults.scheduler_run_user))
            ),
            scheduler_run_group=int(
                os.getenv("SCHEDULER_RUN_GROUP", str(defaults.scheduler_run_group))
            ),
            scheduler_secrets_dir=os.getenv(
                "SCHEDULER_SECRETS_DIR", defaults.scheduler_secrets_dir
            ),
        )


@dataclass
class ControllerConfig:
    """Restart backoff applied by the host runtime after a failed cycle."""

    backoff_base_delay: float = 1.0  # base delay in seconds
    backoff_max_delay: float = 60.0  # max delay in seconds
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            backoff_base_delay=float(os.getenv("BACKOFF_BASE_DELAY", "1.0")),
            backoff_max_delay=float(os.getenv("BACKOFF_MAX_DELAY", "60.0")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.1")),
        )


@dataclass
class APIConfig:
    """Status API server configuration."""

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            enabled=os.getenv("API_ENABLED", "true").lower() == "true",
            host=os.getenv("API_HOST", "127.0.0.1"),
            port=int(os.getenv("API_PORT", "8000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class Config:
    """Main configuration object."""

    store: StoreConfig
    database: DatabaseConfig
    render: RenderConfig
    controller: ControllerConfig
    api: APIConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        store = StoreConfig.from_env()
        # The database password is only mandatory when postgres is in use
        database = (
            DatabaseConfig.from_env()
            if store.backend == "postgres"
            else DatabaseConfig()
        )
        return cls(
            store=store,
            database=database,
            render=RenderConfig.from_env(),
            controller=ControllerConfig.from_env(),
            api=APIConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            store=StoreConfig(),
            database=DatabaseConfig(),
            render=RenderConfig(),
            controller=ControllerConfig(),
            api=APIConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None

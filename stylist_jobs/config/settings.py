"""Application settings with Pydantic Settings validation.

Secrets (database password) are loaded from the environment or a .env file.
Non-sensitive configuration is loaded from config/main.yaml and config/*.yaml files,
merged in order and applied as defaults beneath environment values.
"""

from pathlib import Path
from typing import Any, Final, Literal, cast

import yaml
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stylist_jobs.config.logging_config import get_logger
from stylist_jobs.domain.polling_constants import (
    DEFAULT_CIRCUIT_BREAKER_THRESHOLD,
    DEFAULT_POLL_BACKOFF_FACTOR,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_POLL_MAX_ATTEMPTS,
    DEFAULT_POLL_MAX_INTERVAL_MS,
    DEFAULT_RESULT_CACHE_TTL_SECONDS,
)

POSTGRES_MIN_CONNECTIONS_DEFAULT: Final[int] = 1
POSTGRES_MAX_CONNECTIONS_DEFAULT: Final[int] = 10
POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT: Final[int] = 10_000
POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT: Final[int] = 10
POSTGRES_APPLICATION_NAME_DEFAULT: Final[str] = "stylist_jobs"

CONFIG_DIR: Final[Path] = Path("config")

logger = cast(Any, get_logger(__name__))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge into base (takes precedence)

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_all_configs(config_dir: Path = CONFIG_DIR) -> dict[str, Any]:
    """Load and merge all YAML configs from the config directory.

    Loading order (later overrides earlier):
    1. main.yaml
    2. All other *.yaml files (sorted alphabetically)

    Returns:
        Merged configuration dictionary (empty when no files exist)
    """
    merged_config: dict[str, Any] = {}
    if not config_dir.exists() or not config_dir.is_dir():
        return merged_config

    main_path = config_dir / "main.yaml"
    yaml_files = sorted(f for f in config_dir.glob("*.yaml") if f.name != "main.yaml")
    if main_path.exists():
        yaml_files.insert(0, main_path)

    for yaml_file in yaml_files:
        try:
            with open(yaml_file, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(
                "config_file_load_failed",
                path=str(yaml_file),
                error=str(e),
            )
            continue

        if not isinstance(file_config, dict):
            raise ValueError(f"Config file {yaml_file} must contain a mapping")

        merged_config = deep_merge(merged_config, file_config)
        logger.debug("config_file_loaded", path=str(yaml_file))

    logger.debug("config_load_complete", file_count=len(yaml_files))
    return merged_config


class Settings(BaseSettings):
    """Application settings.

    Secrets are loaded from the environment or .env file.
    Non-sensitive config is loaded from config/*.yaml with fallback to defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from .env) ===

    postgres_password: SecretStr | None = Field(
        default=None, description="PostgreSQL password (from .env, optional)"
    )

    # === NON-SENSITIVE CONFIG (from config/main.yaml or defaults) ===

    # Job store
    job_store_type: Literal["sqlite", "postgres"] = Field(
        default="sqlite", description="Backend holding the ai_jobs table"
    )
    db_path: str = Field(default="data/stylist_jobs.db", description="SQLite file")
    postgres_host: str = Field(default="localhost")
    postgres_port: int = Field(default=5432)
    postgres_database: str = Field(default="postgres")
    postgres_user: str = Field(default="postgres")
    postgres_min_connections: int = Field(default=POSTGRES_MIN_CONNECTIONS_DEFAULT)
    postgres_max_connections: int = Field(default=POSTGRES_MAX_CONNECTIONS_DEFAULT)
    postgres_statement_timeout_ms: int = Field(
        default=POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT
    )
    postgres_connect_timeout_seconds: int = Field(
        default=POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT
    )
    postgres_application_name: str = Field(default=POSTGRES_APPLICATION_NAME_DEFAULT)

    # Polling
    poll_interval_ms: int = Field(default=DEFAULT_POLL_INTERVAL_MS, gt=0)
    poll_max_attempts: int = Field(default=DEFAULT_POLL_MAX_ATTEMPTS, gt=0)
    poll_backoff_factor: float = Field(default=DEFAULT_POLL_BACKOFF_FACTOR, ge=1.0)
    poll_max_interval_ms: int = Field(default=DEFAULT_POLL_MAX_INTERVAL_MS, gt=0)
    circuit_breaker_threshold: int = Field(
        default=DEFAULT_CIRCUIT_BREAKER_THRESHOLD, gt=0
    )

    # Result cache
    result_cache_ttl_seconds: float = Field(
        default=DEFAULT_RESULT_CACHE_TTL_SECONDS, gt=0
    )

    # Logging
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return normalized

    def __init__(self, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs()

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        """Apply YAML-sourced defaults without overriding env-provided values."""

        fields_from_env = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in fields_from_env:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        job_store_config = config.get("job_store") or {}
        _assign("job_store_type", job_store_config.get("type"))
        _assign("db_path", job_store_config.get("path"))

        postgres_config = job_store_config.get("postgres") or {}
        _assign("postgres_host", postgres_config.get("host"))
        _assign("postgres_port", postgres_config.get("port"))
        _assign("postgres_database", postgres_config.get("database"))
        _assign("postgres_user", postgres_config.get("user"))
        _assign("postgres_min_connections", postgres_config.get("min_connections"))
        _assign("postgres_max_connections", postgres_config.get("max_connections"))

        polling_config = config.get("polling") or {}
        _assign("poll_interval_ms", polling_config.get("interval_ms"))
        _assign("poll_max_attempts", polling_config.get("max_attempts"))
        _assign("poll_backoff_factor", polling_config.get("backoff_factor"))
        _assign("poll_max_interval_ms", polling_config.get("max_interval_ms"))
        _assign(
            "circuit_breaker_threshold",
            polling_config.get("circuit_breaker_threshold"),
        )

        cache_config = config.get("result_cache") or {}
        _assign("result_cache_ttl_seconds", cache_config.get("ttl_seconds"))

        logging_config = config.get("logging") or {}
        level = logging_config.get("level")
        _assign("log_level", level.upper() if isinstance(level, str) else None)


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings instance (testing helper)."""

    global _settings
    _settings = None

"""Configuration models, environment overrides, and YAML loading.

Configuration is resolved in layers: model defaults, then an optional YAML file,
then ``JVMMETA_*`` environment variables (plus ``GITHUB_TOKEN``), and finally
explicit CLI flags applied by :mod:`JvmMeta.cli`.  The resolved values are
passed into the orchestrator and database constructors; nothing in the core
reads ambient state on its own.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Mapping, Optional

import platformdirs
import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import UserConfigError

__all__ = [
    "DEFAULT_CONCURRENCY",
    "HttpConfiguration",
    "CrawlConfiguration",
    "DatabaseConfiguration",
    "ExportConfiguration",
    "LoggingConfiguration",
    "ResolvedConfig",
    "EnvironmentOverrides",
    "default_config_paths",
    "load_raw_yaml",
    "load_config",
    "resolve_config",
]

DEFAULT_CONCURRENCY = 8

logger = logging.getLogger(__name__)


class HttpConfiguration(BaseModel):
    """Outbound HTTP behaviour shared by collectors and checksum fetches."""

    timeout_sec: float = Field(default=30.0, gt=0, description="Read timeout per request")
    connect_timeout_sec: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=3, ge=0, le=20, description="Retries after the first attempt")
    backoff_factor: float = Field(default=0.5, ge=0, description="Base delay for exponential backoff")
    max_retry_delay_sec: float = Field(default=30.0, ge=0, description="Cap for a single backoff sleep")
    max_connections: int = Field(default=64, ge=1)
    max_keepalive_connections: int = Field(default=16, ge=0)
    max_checksum_bytes: int = Field(
        default=64 * 1024, ge=256, description="Largest checksum file body that will be parsed"
    )
    user_agent: Optional[str] = Field(default=None, description="Override the default User-Agent")
    github_token: Optional[str] = Field(default=None, description="Token for api.github.com")

    model_config = {"validate_assignment": True}


class CrawlConfiguration(BaseModel):
    """Crawl sizing and vendor selection."""

    concurrency: int = Field(
        default=DEFAULT_CONCURRENCY,
        ge=1,
        le=256,
        description="Maximum in-flight tasks and outbound requests",
    )
    vendors: List[str] = Field(default_factory=list, description="Vendors crawled when none are named")

    @field_validator("vendors")
    @classmethod
    def validate_vendors(cls, value: List[str]) -> List[str]:
        """Lower-case vendor names and drop blanks."""

        return [item.strip().lower() for item in value if item and item.strip()]

    model_config = {"validate_assignment": True}


class DatabaseConfiguration(BaseModel):
    """DuckDB catalogue location and connection pool sizing."""

    path: Path = Field(default=Path("data/jvm.duckdb"), description="DuckDB file or ':memory:'")
    pool_size: int = Field(default=10, ge=1, le=128, description="Pooled cursors shared by workers")
    readonly: bool = Field(default=False, description="Open the database read-only")
    threads: Optional[int] = Field(default=None, ge=1, description="DuckDB execution threads")
    conflict_retries: int = Field(
        default=5, ge=0, le=20, description="Retries of an upsert that hit a write conflict"
    )

    model_config = {"validate_assignment": True}


class ExportConfiguration(BaseModel):
    """Defaults for the export commands."""

    path: Path = Field(default=Path("export"), description="Directory receiving exported JSON")
    pretty: bool = Field(default=False)

    model_config = {"validate_assignment": True}


class LoggingConfiguration(BaseModel):
    """Console and file logging configuration."""

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_dir: Optional[Path] = Field(default=None, description="Directory for JSON-lines logs")
    max_log_size_mb: int = Field(default=50, gt=0)
    retention_days: int = Field(default=14, ge=1)

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        """Normalise logging levels and ensure they match the supported set."""

        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return upper

    model_config = {"validate_assignment": True}


class ResolvedConfig(BaseModel):
    """Materialised configuration for one process."""

    http: HttpConfiguration = Field(default_factory=HttpConfiguration)
    crawl: CrawlConfiguration = Field(default_factory=CrawlConfiguration)
    database: DatabaseConfiguration = Field(default_factory=DatabaseConfiguration)
    export: ExportConfiguration = Field(default_factory=ExportConfiguration)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

    @classmethod
    def from_defaults(cls) -> "ResolvedConfig":
        """Construct a configuration from defaults and the environment only."""

        config = cls()
        _apply_env_overrides(config)
        return config

    model_config = {"validate_assignment": True}


class EnvironmentOverrides(BaseSettings):
    """Pydantic settings model exposing environment-derived overrides."""

    threads: Optional[int] = Field(default=None, alias="JVMMETA_THREADS")
    database_path: Optional[Path] = Field(default=None, alias="JVMMETA_DATABASE_PATH")
    database_pool_size: Optional[int] = Field(default=None, alias="JVMMETA_DATABASE_POOL_SIZE")
    export_path: Optional[Path] = Field(default=None, alias="JVMMETA_EXPORT_PATH")
    log_level: Optional[str] = Field(default=None, alias="JVMMETA_LOG_LEVEL")
    log_dir: Optional[Path] = Field(default=None, alias="JVMMETA_LOG_DIR")
    max_retries: Optional[int] = Field(default=None, alias="JVMMETA_MAX_RETRIES")
    timeout_sec: Optional[float] = Field(default=None, alias="JVMMETA_TIMEOUT_SEC")
    github_token: Optional[str] = Field(default=None, alias="GITHUB_TOKEN")

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")


def _apply_env_overrides(config: ResolvedConfig) -> None:
    """Mutate ``config`` in-place using values from :class:`EnvironmentOverrides`."""

    try:
        env = EnvironmentOverrides()
    except PydanticValidationError as exc:
        raise UserConfigError(f"Invalid environment override: {exc}") from exc

    if env.threads is not None:
        config.crawl.concurrency = env.threads
        logger.info("Config overridden: concurrency=%s", env.threads, extra={"stage": "config"})
    if env.database_path is not None:
        config.database.path = env.database_path
        logger.info(
            "Config overridden: database.path=%s", env.database_path, extra={"stage": "config"}
        )
    if env.database_pool_size is not None:
        config.database.pool_size = env.database_pool_size
        logger.info(
            "Config overridden: database.pool_size=%s",
            env.database_pool_size,
            extra={"stage": "config"},
        )
    if env.export_path is not None:
        config.export.path = env.export_path
        logger.info("Config overridden: export.path=%s", env.export_path, extra={"stage": "config"})
    if env.log_level is not None:
        config.logging.level = env.log_level
        logger.info("Config overridden: log_level=%s", env.log_level, extra={"stage": "config"})
    if env.log_dir is not None:
        config.logging.log_dir = env.log_dir
    if env.max_retries is not None:
        config.http.max_retries = env.max_retries
        logger.info("Config overridden: max_retries=%s", env.max_retries, extra={"stage": "config"})
    if env.timeout_sec is not None:
        config.http.timeout_sec = env.timeout_sec
        logger.info("Config overridden: timeout_sec=%s", env.timeout_sec, extra={"stage": "config"})
    if env.github_token:
        config.http.github_token = env.github_token


def default_config_paths() -> List[Path]:
    """Locations searched for ``config.yaml`` when ``--config`` is not given."""

    return [
        Path.cwd() / "config.yaml",
        Path(platformdirs.user_config_dir("jvm-meta")) / "config.yaml",
    ]


def normalize_config_path(config_path: Path) -> Path:
    """Return a user-supplied configuration path with ``~`` and symlinks resolved."""

    expanded = Path(config_path).expanduser()
    try:
        return expanded.resolve(strict=False)
    except (OSError, RuntimeError):  # pragma: no cover - only triggered on rare filesystems
        return expanded


def load_raw_yaml(config_path: Path) -> Mapping[str, object]:
    """Read a YAML configuration file and return its top-level mapping."""

    normalized_path = normalize_config_path(config_path)

    if not normalized_path.exists():
        raise UserConfigError(f"Configuration file not found: {normalized_path}")

    try:
        with normalized_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise UserConfigError(
            f"Configuration file '{normalized_path}' contains invalid YAML"
        ) from exc

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise UserConfigError("Configuration file must contain a mapping at the root")
    return data


def build_resolved_config(raw_config: Mapping[str, object]) -> ResolvedConfig:
    """Validate a raw mapping and apply environment overrides on top of it."""

    allowed = set(ResolvedConfig.model_fields)
    unknown = sorted(str(key) for key in raw_config if key not in allowed)
    if unknown:
        raise UserConfigError(f"Unknown configuration sections: {', '.join(unknown)}")

    try:
        config = ResolvedConfig.model_validate(dict(raw_config))
    except PydanticValidationError as exc:
        messages = []
        for error in exc.errors():
            location = " -> ".join(str(part) for part in error["loc"])
            messages.append(f"{location}: {error['msg']}")
        raise UserConfigError(
            "Configuration validation failed:\n  " + "\n  ".join(messages)
        ) from exc

    _apply_env_overrides(config)
    return config


def load_config(config_path: Path) -> ResolvedConfig:
    """Load, validate, and resolve a YAML configuration file."""

    return build_resolved_config(load_raw_yaml(config_path))


def resolve_config(config_path: Optional[Path] = None) -> ResolvedConfig:
    """Resolve configuration from ``config_path`` or the default search path."""

    if config_path is not None:
        return load_config(config_path)
    for candidate in default_config_paths():
        if candidate.is_file():
            logger.debug("Using configuration file %s", candidate, extra={"stage": "config"})
            return load_config(candidate)
    return ResolvedConfig.from_defaults()

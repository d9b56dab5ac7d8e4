"""
Configuration management with TOML + environment variable support.

Configuration hierarchy (later overrides earlier):
1. Default values in code
2. TOML file
3. Environment variables (DSQLKIT_* prefix)
"""
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dsqlkit.core.retry import DsqlkitError, RetryPolicy

DEFAULT_IDENTITY = "admin"
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_TOKEN_EXPIRES_IN = 900
DEFAULT_MIGRATIONS_DIR = "migrations"
DEFAULT_TABLE_NAME = "goose_db_version"


class ConfigError(DsqlkitError):
    """Configuration value missing or invalid."""


class ConfigManager:
    """Centralized configuration with TOML + env var support.

    Usage:
        config = ConfigManager(Path("config/default.toml"))
        uri = config.get("database.uri")
        attempts = config.get_int("retry.max_attempts", 5)
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        env_prefix: str = "DSQLKIT_",
    ) -> None:
        """Initialize ConfigManager.

        Args:
            config_path: Path to TOML config file (optional)
            env_prefix: Prefix for environment variable overrides
        """
        self._data: dict[str, Any] = {}
        self._env_prefix = env_prefix
        self._config_path = config_path

        if config_path and config_path.exists():
            self._load_toml(config_path)

    def _load_toml(self, path: Path) -> None:
        """Load configuration from TOML file."""
        with open(path, "rb") as f:
            self._data = tomllib.load(f)

    def _get_nested(self, data: dict[str, Any], key: str) -> tuple[bool, Any]:
        """Get a nested value using dot notation.

        Returns (found, value) tuple.
        """
        parts = key.split(".")
        current = data

        for part in parts:
            if not isinstance(current, dict) or part not in current:
                return False, None
            current = current[part]

        return True, current

    def _get_env_value(self, key: str) -> tuple[bool, Any]:
        """Get value from environment variable.

        Converts key like "retry.max_attempts" to "DSQLKIT_RETRY_MAX_ATTEMPTS".
        """
        env_key = self._env_prefix + key.upper().replace(".", "_")
        if env_key in os.environ:
            value = os.environ[env_key]
            return True, self._parse_env_value(value)
        return False, None

    def _parse_env_value(self, value: str) -> Any:
        """Parse environment variable string to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value with dot notation.

        Environment variables take precedence over TOML values.

        Args:
            key: Dot-notation key like "database.uri"
            default: Default value if key not found

        Returns:
            Configuration value
        """
        found, value = self._get_env_value(key)
        if found:
            return value

        found, value = self._get_nested(self._data, key)
        if found:
            return value

        return default

    def set(self, key: str, value: Any) -> None:
        """Set a value in the in-memory data (used for CLI overrides)."""
        parts = key.split(".")
        current = self._data
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value

    def get_section(self, section: str) -> dict[str, Any]:
        """Get entire configuration section.

        Args:
            section: Dot-notation path to section

        Returns:
            Dictionary of section values
        """
        found, value = self._get_nested(self._data, section)
        if found and isinstance(value, dict):
            return value
        return {}

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get configuration value as boolean."""
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        return bool(value)

    def get_int(self, key: str, default: int = 0) -> int:
        """Get configuration value as integer."""
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{key} must be an integer, got {value!r}", cause=e)

    def get_float(self, key: str, default: float = 0.0) -> float:
        """Get configuration value as float."""
        value = self.get(key)
        if value is None:
            return default
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{key} must be a number, got {value!r}", cause=e)

    def get_list(self, key: str, default: Optional[list[Any]] = None) -> list[Any]:
        """Get configuration value as list."""
        if default is None:
            default = []
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            return [v.strip() for v in value.split(",")]
        return [value]

    def reload(self) -> None:
        """Reload configuration from TOML file."""
        if self._config_path and self._config_path.exists():
            self._load_toml(self._config_path)

    @property
    def raw_data(self) -> dict[str, Any]:
        """Get raw configuration data (for debugging)."""
        return self._data.copy()


# =============================================================================
# Typed Settings
# =============================================================================


@dataclass(frozen=True)
class PoolSettings:
    """Connection pool sizing. Zero means "use the driver default"."""

    min_size: int = 1
    max_size: int = 4
    max_lifetime_seconds: float = 0.0
    max_idle_seconds: float = 0.0


@dataclass(frozen=True)
class DsqlSettings:
    """Everything the bootstrap-and-migrate sequence needs."""

    uri: str
    identity: Optional[str] = None
    region: Optional[str] = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    token_expires_in: int = DEFAULT_TOKEN_EXPIRES_IN
    migrations_dir: Path = Path(DEFAULT_MIGRATIONS_DIR)
    table_name: str = DEFAULT_TABLE_NAME
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    pool: PoolSettings = field(default_factory=PoolSettings)

    @classmethod
    def from_config(cls, config: ConfigManager) -> "DsqlSettings":
        """Build settings from a ConfigManager.

        Raises:
            ConfigError: if database.uri is missing or a value is invalid.
        """
        uri = config.get("database.uri")
        if not uri:
            raise ConfigError(
                "database.uri is required (set it in the TOML file or DSQLKIT_DATABASE_URI)"
            )
        if not str(uri).startswith("dsql://"):
            raise ConfigError(f"database.uri must use the dsql:// scheme, got {uri!r}")

        timeout = config.get_float("database.timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
        if timeout <= 0:
            raise ConfigError(f"database.timeout_seconds must be positive, got {timeout}")

        retry_section = dict(config.get_section("retry"))
        for key in ("max_attempts", "base_backoff_ms", "jitter_fraction", "seed"):
            value = config.get(f"retry.{key}")
            if value is not None:
                retry_section[key] = value
        try:
            retry = RetryPolicy.from_dict(retry_section)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid retry configuration: {e}", cause=e)

        pool = PoolSettings(
            min_size=config.get_int("pool.min_size", 1),
            max_size=config.get_int("pool.max_size", 4),
            max_lifetime_seconds=config.get_float("pool.max_lifetime_seconds", 0.0),
            max_idle_seconds=config.get_float("pool.max_idle_seconds", 0.0),
        )
        if pool.min_size < 0 or pool.max_size < max(pool.min_size, 1):
            raise ConfigError(
                f"pool sizes invalid: min_size={pool.min_size} max_size={pool.max_size}"
            )

        return cls(
            uri=str(uri),
            identity=config.get("database.identity"),
            region=config.get("database.region"),
            timeout_seconds=timeout,
            token_expires_in=config.get_int(
                "database.token_expires_in", DEFAULT_TOKEN_EXPIRES_IN
            ),
            migrations_dir=Path(
                config.get("migrations.dir", DEFAULT_MIGRATIONS_DIR)
            ),
            table_name=config.get("migrations.table", DEFAULT_TABLE_NAME),
            retry=retry,
            pool=pool,
        )

"""Configuration resolver with 4-level priority.

Priority (highest to lowest):
1. Explicit overrides (CLI arguments or host-supplied values)
2. Environment variables (COOKIMPORT_*)
3. Config files (user > system)
4. Defaults
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from cookimport.core.errors import ConfigError

ALLOWED_LOGGING_LEVELS = frozenset({"quiet", "normal", "verbose", "debug"})
DEFAULT_LOGGING_LEVEL = "normal"

DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_MAX_ATTEMPTS = 600

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class ConfigSource:
    """Represents where a config value came from."""

    value: Any
    source: str  # 'cli' | 'env' | 'user_config' | 'system_config' | 'default'


@dataclass(frozen=True)
class LoggingPolicy:
    """Resolved, immutable logging policy."""

    level_name: str  # quiet | normal | verbose | debug
    emit_error: bool
    emit_warning: bool
    emit_info: bool
    emit_verbose: bool
    emit_debug: bool
    color: bool
    sources: dict[str, ConfigSource]


@dataclass(frozen=True)
class ApiSettings:
    """Connection settings for the Resource API."""

    base_url: str
    timeout: float


@dataclass(frozen=True)
class PollingPolicy:
    """Bounds for job status polling.

    interval: seconds between the end of one read and the start of the next.
    max_attempts: total reads before giving up (None = unbounded).
    max_duration: seconds since begin() before giving up (None = unbounded).
    """

    interval: float = DEFAULT_POLL_INTERVAL
    max_attempts: int | None = DEFAULT_MAX_ATTEMPTS
    max_duration: float | None = None

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ConfigError("polling.interval must be >= 0")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ConfigError("polling.max_attempts must be >= 1 (or unset)")
        if self.max_duration is not None and self.max_duration <= 0:
            raise ConfigError("polling.max_duration must be > 0 (or unset)")


class ConfigResolver:
    """Resolve configuration with strict 4-level priority.

    Example:
        resolver = ConfigResolver(
            cli_args={'polling': {'interval': 1.5}},
            user_config_path=Path('~/.config/cookimport/config.yaml')
        )

        interval, source = resolver.resolve('polling.interval')
        # interval = 1.5, source = 'cli'
    """

    def __init__(
        self,
        cli_args: dict[str, Any] | None = None,
        user_config_path: Path | None = None,
        system_config_path: Path | None = None,
        defaults: dict[str, Any] | None = None,
    ) -> None:
        """Initialize config resolver.

        Args:
            cli_args: Explicit overrides (highest priority)
            user_config_path: Path to user config file
            system_config_path: Path to system config file
            defaults: Default values (lowest priority)
        """
        self.cli_args = cli_args or {}
        self.user_config_path = user_config_path or Path.home() / ".config/cookimport/config.yaml"
        self.system_config_path = system_config_path or Path("/etc/cookimport/config.yaml")
        self.defaults = defaults if defaults is not None else self._default_config()

        self._user_config: dict[str, Any] | None = None
        self._system_config: dict[str, Any] | None = None

    def resolve(self, key: str) -> tuple[Any, str]:
        """Resolve config value with priority.

        Args:
            key: Config key (supports dot notation: 'polling.interval')

        Returns:
            (value, source) tuple

        Raises:
            ConfigError: If key not found in any source
        """
        value = self._from_cli(key)
        if value is not None:
            return value, "cli"

        value = self._from_env(key)
        if value is not None:
            return value, "env"

        value = self._from_user_config(key)
        if value is not None:
            return value, "user_config"

        value = self._from_system_config(key)
        if value is not None:
            return value, "system_config"

        value = self._from_defaults(key)
        if value is not None:
            return value, "default"

        raise ConfigError(f"Config key '{key}' not found in any source")

    def resolve_api_settings(self) -> ApiSettings:
        """Resolve and validate api.base_url and api.timeout."""
        base_url, _src = self.resolve("api.base_url")
        if not isinstance(base_url, str) or not base_url.strip():
            raise ConfigError("Config key 'api.base_url' must be a non-empty string")
        timeout = self._coerce_float("api.timeout", self.resolve("api.timeout")[0])
        if timeout <= 0:
            raise ConfigError("Config key 'api.timeout' must be > 0")
        return ApiSettings(base_url=base_url.strip().rstrip("/"), timeout=timeout)

    def resolve_polling_policy(self) -> PollingPolicy:
        """Resolve polling.interval, polling.max_attempts and polling.max_duration.

        A max_attempts or max_duration of 0 disables that bound.
        """
        found = self._try_resolve_value("polling.interval")
        interval = (
            DEFAULT_POLL_INTERVAL
            if found is None
            else self._coerce_float("polling.interval", found[0])
        )

        found = self._try_resolve_value("polling.max_attempts")
        max_attempts: int | None = None
        if found is not None:
            max_attempts = self._coerce_int("polling.max_attempts", found[0]) or None

        found = self._try_resolve_value("polling.max_duration")
        max_duration: float | None = None
        if found is not None:
            max_duration = self._coerce_float("polling.max_duration", found[0]) or None

        return PollingPolicy(
            interval=interval, max_attempts=max_attempts, max_duration=max_duration
        )

    def resolve_logging_level(self) -> str:
        """Resolve and validate logging.level.

        Allowed values (after normalization):
            quiet | normal | verbose | debug

        Raises:
            ConfigError: If the resolved value is invalid.
        """
        level, _src = self._resolve_logging_level_and_source()
        return level

    def resolve_logging_policy(self) -> LoggingPolicy:
        """Resolve the logging policy. Side-effect free."""
        level_name, src = self._resolve_logging_level_and_source()

        found = self._try_resolve_value("logging.color")
        color = True if found is None else self._coerce_bool("logging.color", found[0])

        return LoggingPolicy(
            level_name=level_name,
            emit_error=True,
            emit_warning=True,
            emit_info=level_name != "quiet",
            emit_verbose=level_name in {"verbose", "debug"},
            emit_debug=level_name == "debug",
            color=color,
            sources={"level_name": src},
        )

    def resolve_all(self) -> dict[str, ConfigSource]:
        """Resolve every leaf key present in any source."""
        result: dict[str, ConfigSource] = {}

        all_keys: set[str] = set()
        all_keys.update(_flatten_keys(self.cli_args))
        all_keys.update(_flatten_keys(self._get_user_config()))
        all_keys.update(_flatten_keys(self._get_system_config()))
        all_keys.update(_flatten_keys(self.defaults))

        for key in sorted(all_keys):
            try:
                value, source = self.resolve(key)
                result[key] = ConfigSource(value=value, source=source)
            except ConfigError:
                continue

        return result

    def _resolve_logging_level_and_source(self) -> tuple[str, ConfigSource]:
        key = "logging.level"
        found = self._try_resolve_value(key)
        if found is None:
            return DEFAULT_LOGGING_LEVEL, ConfigSource(
                value=DEFAULT_LOGGING_LEVEL,
                source="default",
            )

        value, source = found
        if not isinstance(value, str):
            raise ConfigError(f"Config key '{key}' must be a string, got {type(value).__name__}")

        norm = value.strip().lower()
        if norm not in ALLOWED_LOGGING_LEVELS:
            allowed = ", ".join(sorted(ALLOWED_LOGGING_LEVELS))
            raise ConfigError(f"Invalid '{key}': {value!r}. Allowed values: {allowed}")

        return norm, ConfigSource(value=norm, source=source)

    def _try_resolve_value(self, key: str) -> tuple[Any, str] | None:
        try:
            return self.resolve(key)
        except ConfigError as e:
            if "not found in any source" in str(e):
                return None
            raise

    @staticmethod
    def _coerce_float(key: str, value: Any) -> float:
        if isinstance(value, bool):
            raise ConfigError(f"Config key '{key}' must be a number")
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Config key '{key}' must be a number, got {value!r}") from e

    @staticmethod
    def _coerce_int(key: str, value: Any) -> int:
        if isinstance(value, bool):
            raise ConfigError(f"Config key '{key}' must be an int")
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        raise ConfigError(f"Config key '{key}' must be an int, got {value!r}")

    @staticmethod
    def _coerce_bool(key: str, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        s = str(value).strip().lower()
        if s in _TRUE_VALUES:
            return True
        if s in _FALSE_VALUES:
            return False
        raise ConfigError(f"Config key '{key}' must be a bool, got {value!r}")

    def _from_cli(self, key: str) -> Any | None:
        return self._get_nested(self.cli_args, key)

    def _from_env(self, key: str) -> Any | None:
        """Get value from environment variables.

        Environment variable format: COOKIMPORT_KEY_NAME
        Example: COOKIMPORT_API_BASE_URL, COOKIMPORT_POLLING_INTERVAL
        """
        env_key = f"COOKIMPORT_{key.upper().replace('.', '_')}"
        return os.environ.get(env_key)

    def _from_user_config(self, key: str) -> Any | None:
        return self._get_nested(self._get_user_config(), key)

    def _from_system_config(self, key: str) -> Any | None:
        return self._get_nested(self._get_system_config(), key)

    def _from_defaults(self, key: str) -> Any | None:
        return self._get_nested(self.defaults, key)

    def _get_user_config(self) -> dict[str, Any]:
        if self._user_config is None:
            self._user_config = self._load_yaml(self.user_config_path)
        return self._user_config

    def _get_system_config(self) -> dict[str, Any]:
        if self._system_config is None:
            self._system_config = self._load_yaml(self.system_config_path)
        return self._system_config

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
                return data if isinstance(data, dict) else {}
        except Exception as e:
            raise ConfigError(f"Failed to load config from {path}: {e}") from e

    def _get_nested(self, data: dict[str, Any], key: str) -> Any | None:
        """Get nested value using dot notation.

        Example:
            data = {'polling': {'interval': 3.0}}
            _get_nested(data, 'polling.interval') -> 3.0
        """
        current: Any = data

        for part in key.split("."):
            if not isinstance(current, dict):
                return None
            current = current.get(part)
            if current is None:
                return None

        return current

    @staticmethod
    def _default_config() -> dict[str, Any]:
        return {
            "api": {
                "base_url": "http://localhost:8080",
                "timeout": 30.0,
            },
            "polling": {
                "interval": DEFAULT_POLL_INTERVAL,
                "max_attempts": DEFAULT_MAX_ATTEMPTS,
                "max_duration": None,
            },
            "logging": {
                "level": DEFAULT_LOGGING_LEVEL,
                "color": True,
            },
            "diagnostics": {
                "enabled": False,
                "dir": "/tmp/cookimport/diagnostics",
            },
        }


def _flatten_items(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    items: list[tuple[str, Any]] = []

    for key, value in data.items():
        key_path = f"{prefix}.{key}" if prefix else str(key)

        if isinstance(value, dict):
            items.extend(_flatten_items(value, key_path))
        else:
            items.append((key_path, value))

    return items


def _flatten_keys(data: dict[str, Any]) -> set[str]:
    return {k for k, _v in _flatten_items(data)}

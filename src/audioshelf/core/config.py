"""Configuration resolver with 4-level priority.

Priority (highest to lowest):
1. CLI arguments
2. Environment variables (AUDIOSHELF_*)
3. Config files (user > system)
4. Defaults
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from audioshelf.core.errors import ConfigError

ALLOWED_LOGGING_LEVELS = frozenset({"quiet", "normal", "verbose", "debug"})
DEFAULT_LOGGING_LEVEL = "normal"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class ConfigSource:
    """Represents where a config value came from."""

    value: Any
    source: str  # 'cli' | 'env' | 'user_config' | 'system_config' | 'default'


def _flatten_items(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    """Flatten nested dicts to dot-notation key paths."""
    items: list[tuple[str, Any]] = []

    for key, value in data.items():
        key_path = f"{prefix}.{key}" if prefix else str(key)

        if isinstance(value, dict):
            items.extend(_flatten_items(value, key_path))
        else:
            items.append((key_path, value))

    return items


def _get_nested(data: dict[str, Any], key: str) -> Any | None:
    """Dot-path lookup: _get_nested({"web": {"port": 1}}, "web.port") -> 1."""
    current: Any = data
    for part in key.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


class ConfigResolver:
    """Resolve configuration with strict 4-level priority.

    Example:
        resolver = ConfigResolver(
            cli_args={'library': {'root': '/srv/audiobooks'}},
            user_config_path=Path('~/.config/audioshelf/config.yaml')
        )

        root, source = resolver.resolve('library.root')
        # root = '/srv/audiobooks', source = 'cli'
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
            cli_args: Arguments from CLI (highest priority), nested or dotted keys
            user_config_path: Path to user config file
            system_config_path: Path to system config file
            defaults: Default values (lowest priority)
        """
        self.cli_args = cli_args or {}
        self.user_config_path = user_config_path or Path.home() / ".config/audioshelf/config.yaml"
        self.system_config_path = system_config_path or Path("/etc/audioshelf/config.yaml")
        self.defaults = defaults if defaults is not None else self._default_config()

        self._user_config: dict[str, Any] | None = None
        self._system_config: dict[str, Any] | None = None

    def resolve(self, key: str) -> tuple[Any, str]:
        """Resolve config value with priority.

        Args:
            key: Config key (supports dot notation: 'conversion.max_workers')

        Returns:
            (value, source) tuple

        Raises:
            ConfigError: If key not found in any source
        """
        for source, lookup in self._layers():
            value = lookup(key)
            if value is not None:
                return value, source
        raise ConfigError(f"Config key '{key}' not found in any source")

    def resolve_str(self, key: str) -> str:
        value, _src = self.resolve(key)
        if not isinstance(value, str):
            raise ConfigError(f"Config key '{key}' must be a string, got {type(value).__name__}")
        if value.strip() == "":
            raise ConfigError(f"Config key '{key}' must not be empty")
        return value

    def resolve_int(self, key: str) -> int:
        value, src = self.resolve(key)
        if isinstance(value, bool):
            raise ConfigError(f"Config key '{key}' must be an int")
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value.strip())
        raise ConfigError(f"Config key '{key}' must be an int (from {src}): {value!r}")

    def resolve_float(self, key: str) -> float:
        value, src = self.resolve(key)
        if isinstance(value, bool):
            raise ConfigError(f"Config key '{key}' must be a number")
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                pass
        raise ConfigError(f"Config key '{key}' must be a number (from {src}): {value!r}")

    def resolve_bool(self, key: str) -> bool:
        value, src = self.resolve(key)
        if isinstance(value, bool):
            return value
        s = str(value).strip().lower()
        if s in _TRUE_VALUES:
            return True
        if s in _FALSE_VALUES:
            return False
        raise ConfigError(f"Config key '{key}' must be a bool (from {src}): {value!r}")

    def resolve_logging_level(self) -> str:
        """Resolve and validate logging.level.

        Allowed values (after normalization):
            quiet | normal | verbose | debug

        If the key is not provided by any source, returns DEFAULT_LOGGING_LEVEL.

        Raises:
            ConfigError: If the resolved value is invalid.
        """
        key = "logging.level"
        try:
            value, _src = self.resolve(key)
        except ConfigError:
            return DEFAULT_LOGGING_LEVEL

        if not isinstance(value, str):
            raise ConfigError(f"Config key '{key}' must be a string, got {type(value).__name__}")

        norm = value.strip().lower()
        if norm not in ALLOWED_LOGGING_LEVELS:
            allowed = ", ".join(sorted(ALLOWED_LOGGING_LEVELS))
            raise ConfigError(f"Invalid '{key}': {value!r}. Allowed values: {allowed}")
        return norm

    def resolve_all(self) -> dict[str, ConfigSource]:
        """Resolve every key known from defaults, CLI and config files.

        Returns:
            Dict of key -> ConfigSource, sorted by key
        """
        all_keys: set[str] = set()
        all_keys.update(k for k, _v in _flatten_items(self.defaults))
        all_keys.update(k for k, _v in _flatten_items(self.cli_args))
        all_keys.update(k for k, _v in _flatten_items(self._get_user_config()))
        all_keys.update(k for k, _v in _flatten_items(self._get_system_config()))

        result: dict[str, ConfigSource] = {}
        for key in sorted(all_keys):
            try:
                value, source = self.resolve(key)
            except ConfigError:
                continue
            result[key] = ConfigSource(value=value, source=source)
        return result

    def _layers(self) -> tuple[tuple[str, Callable[[str], Any | None]], ...]:
        return (
            ("cli", self._from_cli),
            ("env", self._from_env),
            ("user_config", lambda key: _get_nested(self._get_user_config(), key)),
            ("system_config", lambda key: _get_nested(self._get_system_config(), key)),
            ("default", lambda key: _get_nested(self.defaults, key)),
        )

    def _from_cli(self, key: str) -> Any | None:
        if self.cli_args.get(key) is not None:
            return self.cli_args[key]
        return _get_nested(self.cli_args, key)

    @staticmethod
    def _from_env(key: str) -> Any | None:
        # library.root -> AUDIOSHELF_LIBRARY_ROOT
        return os.environ.get("AUDIOSHELF_" + key.upper().replace(".", "_"))

    def _get_user_config(self) -> dict[str, Any]:
        if self._user_config is None:
            self._user_config = self._load_yaml(self.user_config_path)
        return self._user_config

    def _get_system_config(self) -> dict[str, Any]:
        if self._system_config is None:
            self._system_config = self._load_yaml(self.system_config_path)
        return self._system_config

    @staticmethod
    def _load_yaml(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}", "Fix or remove the file") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    @staticmethod
    def _default_config() -> dict[str, Any]:
        """Default configuration."""
        return {
            "library": {
                "root": str(Path.home() / "Audiobooks"),
            },
            "data_dir": str(Path.home() / ".audioshelf"),
            "web": {
                "host": "0.0.0.0",
                "port": 5001,
            },
            "conversion": {
                "enabled": True,
                "max_workers": 10,
                "load_limit": 0.85,
                "overload_wait_seconds": 10,
                "overload_retries": 6,
                "ffmpeg_path": "ffmpeg",
                "bitrate": "64k",
                "sample_rate": 44100,
                "channels": 1,
                "min_output_bytes": 1024,
            },
            "logging": {
                "level": "normal",
                "color": True,
            },
            "diagnostics": {
                "enabled": False,
            },
        }


@dataclass(frozen=True)
class ConversionSettings:
    enabled: bool = True
    max_workers: int = 10
    load_limit: float = 0.85
    overload_wait_seconds: float = 10.0
    overload_retries: int = 6
    ffmpeg_path: str = "ffmpeg"
    bitrate: str = "64k"
    sample_rate: int = 44100
    channels: int = 1
    min_output_bytes: int = 1024


@dataclass(frozen=True)
class Settings:
    """Effective, validated settings for one process."""

    library_root: Path
    data_dir: Path
    host: str = "0.0.0.0"
    port: int = 5001
    logging_level: str = DEFAULT_LOGGING_LEVEL
    color: bool = True
    diagnostics_enabled: bool = False
    conversion: ConversionSettings = field(default_factory=ConversionSettings)

    @property
    def metadata_path(self) -> Path:
        return self.data_dir / "metadata.json"

    @property
    def covers_dir(self) -> Path:
        return self.data_dir / "covers"

    @property
    def diagnostics_path(self) -> Path:
        return self.data_dir / "diagnostics" / "diagnostics.jsonl"

    @classmethod
    def from_resolver(cls, resolver: ConfigResolver) -> Settings:
        conversion = ConversionSettings(
            enabled=resolver.resolve_bool("conversion.enabled"),
            max_workers=resolver.resolve_int("conversion.max_workers"),
            load_limit=resolver.resolve_float("conversion.load_limit"),
            overload_wait_seconds=resolver.resolve_float("conversion.overload_wait_seconds"),
            overload_retries=resolver.resolve_int("conversion.overload_retries"),
            ffmpeg_path=resolver.resolve_str("conversion.ffmpeg_path"),
            bitrate=resolver.resolve_str("conversion.bitrate"),
            sample_rate=resolver.resolve_int("conversion.sample_rate"),
            channels=resolver.resolve_int("conversion.channels"),
            min_output_bytes=resolver.resolve_int("conversion.min_output_bytes"),
        )
        if conversion.max_workers < 1:
            raise ConfigError("Config key 'conversion.max_workers' must be >= 1")
        if not 0.0 < conversion.load_limit <= 1.0:
            raise ConfigError("Config key 'conversion.load_limit' must be within (0, 1]")
        if conversion.overload_retries < 0:
            raise ConfigError("Config key 'conversion.overload_retries' must be >= 0")

        return cls(
            library_root=Path(resolver.resolve_str("library.root")).expanduser(),
            data_dir=Path(resolver.resolve_str("data_dir")).expanduser(),
            host=resolver.resolve_str("web.host"),
            port=resolver.resolve_int("web.port"),
            logging_level=resolver.resolve_logging_level(),
            color=resolver.resolve_bool("logging.color"),
            diagnostics_enabled=resolver.resolve_bool("diagnostics.enabled"),
            conversion=conversion,
        )

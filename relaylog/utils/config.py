"""
Configuration management for relaylog.

Handles loading and merging configuration from:
- Built-in defaults
- A YAML or JSON configuration file
- Environment variables
- Command-line arguments

Later sources win. Relative paths are resolved against the directory of the
configuration file.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

CONFIG_ENV = "RELAYLOG_CONFIG"
DEFAULT_CONFIG_NAME = "relaylog.yaml"

TRUE_STRINGS = ("1", "true", "yes", "on")
FALSE_STRINGS = ("0", "false", "no", "off")

DEFAULTS: Dict[str, Any] = {
    "global_name": "events.jsonl",
    "per_prefix": "events.",
    "per_suffix": ".jsonl",
    "rotate_global_bytes": 0,
    "rotate_peer_bytes": 0,
    "archive_timefmt": "%Y%m%d-%H%M%S",
    "fsync_on_append": True,
    "meta_log": "meta.jsonl",
    "state_file": "state.json",
    "lp_timeout_sec": 25,
    "pull_limit": 200,
    "retry_backoff_ms": 250,
    "fifo_name": "send.fifo",
    "logging": {
        "level": "INFO",
        "format": "console",
    },
}

PATH_KEYS = (
    "base_dir",
    "data_dir",
    "aliases_path",
    "global_dir",
    "per_dir",
    "fifo_path",
)


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


def load_document(path: Path) -> Any:
    """
    Parse a JSON or YAML file.

    `.json` files go through the json module (tab indentation is valid JSON
    but not valid YAML); anything else is read with PyYAML.

    Raises:
        OSError: If the file cannot be read
        ValueError: If the content is not UTF-8 or not valid JSON
        yaml.YAMLError: If the content is not valid YAML
    """
    path = Path(path)
    text = path.read_bytes().decode("utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


@dataclass
class HubSettings:
    """
    Fully resolved settings shared by the hub and the tailer.

    All paths are absolute or relative to the process working directory;
    no further resolution is needed.
    """
    base_dir: Path
    data_dir: Path
    aliases_path: Path
    global_dir: Path
    per_dir: Path
    global_name: str
    per_prefix: str
    per_suffix: str
    rotate_global_bytes: int
    rotate_peer_bytes: int
    archive_timefmt: str
    fsync_on_append: bool
    meta_log_path: Path
    state_path: Path
    worker: str
    phone_id: str
    lp_timeout_sec: int
    pull_limit: int
    retry_backoff_ms: int
    fifo_path: Path
    log_level: str
    log_format: str

    @property
    def global_log_path(self) -> Path:
        return self.global_dir / self.global_name

    def require_addressing(self) -> None:
        """
        Check the fields the hub cannot start without.

        Raises:
            ConfigError: If worker or phone_id is missing
        """
        missing = [name for name in ("worker", "phone_id") if not getattr(self, name)]
        if missing:
            raise ConfigError(
                f"missing required setting(s): {', '.join(missing)} "
                "(set via config file, environment or command line)"
            )


def find_config_file(
    explicit: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[Path]:
    """
    Locate the configuration file.

    Order: explicit path, $RELAYLOG_CONFIG, ~/.relaylog/relaylog.yaml,
    ./relaylog.yaml. An explicit or environment path is returned even if it
    does not exist so the caller can report it.
    """
    if explicit:
        return Path(explicit).expanduser()

    environ = os.environ if environ is None else environ
    if env_path := environ.get(CONFIG_ENV):
        return Path(env_path).expanduser()

    for candidate in (
        Path.home() / ".relaylog" / DEFAULT_CONFIG_NAME,
        Path.cwd() / DEFAULT_CONFIG_NAME,
    ):
        if candidate.exists():
            return candidate

    return None


class Config:
    """Configuration manager for relaylog."""

    def __init__(
        self,
        config_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize configuration.

        Args:
            config_file: Path to configuration file. If None, the file is
                looked up with find_config_file().
            environ: Environment mapping (defaults to os.environ)
        """
        self._environ = os.environ if environ is None else environ
        self._config: Dict[str, Any] = self._deep_merge({}, DEFAULTS)

        self.config_path = find_config_file(config_file, self._environ)
        self.config_dir = (
            self.config_path.parent if self.config_path is not None else Path.cwd()
        )

        if self.config_path is not None:
            if self.config_path.exists():
                self._load_config_file(self.config_path)
            elif config_file:
                raise ConfigError(f"config file not found: {self.config_path}")

        self._apply_env_overrides()

    def _load_config_file(self, config_file: Path) -> None:
        """
        Load configuration from a YAML (or JSON) file.

        Path-valued keys are resolved against the file's directory here so
        that later overrides keep their own meaning.

        Args:
            config_file: Path to configuration file
        """
        try:
            file_config = load_document(config_file)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"cannot read config file {config_file}: {e}") from e

        if file_config is None:
            return
        if not isinstance(file_config, dict):
            raise ConfigError(f"config file {config_file} must contain a mapping")

        for key in PATH_KEYS:
            if file_config.get(key):
                file_config[key] = str(self._resolve(file_config[key]))

        self._merge_config(file_config)

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.config_dir / path

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """
        Deep merge new configuration into existing configuration.

        Args:
            new_config: Configuration dictionary to merge
        """
        self._config = self._deep_merge(self._config, new_config)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two dictionaries.

        Args:
            base: Base dictionary
            override: Override dictionary

        Returns:
            Merged dictionary
        """
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            elif isinstance(value, dict):
                result[key] = self._deep_merge({}, value)
            else:
                result[key] = value
        return result

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        env = self._environ

        if base := env.get("RELAYLOG_BASE"):
            self.set("base_dir", base)

        if data := env.get("RELAYLOG_DATA"):
            self.set("data_dir", data)

        # aliases and fifo follow the config file's directory when relative
        if aliases := env.get("RELAYLOG_ALIASES"):
            self.set("aliases_path", str(self._resolve(aliases)))

        if fifo := env.get("RELAYLOG_FIFO"):
            self.set("fifo_path", str(self._resolve(fifo)))

        if worker := env.get("RELAYLOG_WORKER"):
            self.set("worker", worker)

        if phone_id := env.get("RELAYLOG_PHONE_ID"):
            self.set("phone_id", phone_id)

        if log_level := env.get("LOG_LEVEL"):
            self.set("logging.level", log_level)

    def apply_overrides(self, overrides: Mapping[str, Any]) -> None:
        """
        Apply command-line overrides. None values are ignored.

        Args:
            overrides: Mapping of dot-notation keys to values
        """
        for key, value in overrides.items():
            if value is not None:
                self.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "logging.level")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in dot notation
            value: Value to set
        """
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def to_dict(self) -> Dict[str, Any]:
        """
        Get entire configuration as dictionary.

        Returns:
            Configuration dictionary
        """
        return self._deep_merge({}, self._config)

    def _int(self, key: str) -> int:
        value = self.get(key)
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{key} must be an integer, got {value!r}") from e

    def _bool(self, key: str) -> bool:
        value = self.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value != 0
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in TRUE_STRINGS:
                return True
            if lowered in FALSE_STRINGS:
                return False
        raise ConfigError(f"{key} must be a boolean, got {value!r}")

    def settings(self) -> HubSettings:
        """
        Resolve the merged configuration into HubSettings.

        Returns:
            Resolved settings

        Raises:
            ConfigError: If a numeric or boolean setting has the wrong type
        """
        base_dir = Path(self.get("base_dir") or Path.home() / ".relaylog").expanduser()
        data_dir = Path(self.get("data_dir") or base_dir).expanduser()
        global_dir = Path(self.get("global_dir") or data_dir)
        per_dir = Path(self.get("per_dir") or data_dir)
        global_name = str(self.get("global_name"))

        # legacy single-key form: a bare name, or a path naming dir and file
        if legacy := self.get("global_log"):
            legacy_path = Path(legacy)
            if legacy_path.parent != Path("."):
                global_dir = self._resolve(str(legacy_path.parent))
            global_name = legacy_path.name

        aliases_path = Path(self.get("aliases_path") or base_dir / "aliases.json")
        fifo_path = Path(self.get("fifo_path") or base_dir / str(self.get("fifo_name")))

        worker = str(self.get("worker") or "").rstrip("/")

        return HubSettings(
            base_dir=base_dir,
            data_dir=data_dir,
            aliases_path=aliases_path,
            global_dir=global_dir,
            per_dir=per_dir,
            global_name=global_name,
            per_prefix=str(self.get("per_prefix")),
            per_suffix=str(self.get("per_suffix")),
            rotate_global_bytes=self._int("rotate_global_bytes"),
            rotate_peer_bytes=self._int("rotate_peer_bytes"),
            archive_timefmt=str(self.get("archive_timefmt")),
            fsync_on_append=self._bool("fsync_on_append"),
            meta_log_path=data_dir / str(self.get("meta_log")),
            state_path=data_dir / str(self.get("state_file")),
            worker=worker,
            phone_id=str(self.get("phone_id") or ""),
            lp_timeout_sec=self._int("lp_timeout_sec"),
            pull_limit=self._int("pull_limit"),
            retry_backoff_ms=self._int("retry_backoff_ms"),
            fifo_path=fifo_path,
            log_level=str(self.get("logging.level")),
            log_format=str(self.get("logging.format")),
        )

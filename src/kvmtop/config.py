"""Configuration system for kvmtop."""

from dataclasses import dataclass, field
from pathlib import Path

import tomlkit

from kvmtop.session import MIN_INTERVAL, View

_LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass
class DisplayConfig:
    """Initial session settings."""

    interval: float = 5.0  # Seconds between samples
    limit: int = 50  # Rows shown per view
    view: str = "process"
    color: bool = True


@dataclass
class NetworkConfig:
    """Network view settings."""

    hide: list[str] = field(default_factory=lambda: ["lo", "fw*"])  # fnmatch patterns


@dataclass
class StorageConfig:
    """Storage view settings."""

    exclude: list[str] = field(default_factory=lambda: ["loop*", "ram*"])  # fnmatch patterns


@dataclass
class LoggingConfig:
    """Log file settings."""

    level: str = "info"
    max_bytes: int = 2 * 1024 * 1024
    backup_count: int = 2


@dataclass
class Config:
    """Root configuration."""

    display: DisplayConfig = field(default_factory=DisplayConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "kvmtop"

    @property
    def config_path(self) -> Path:
        """Default configuration file path."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """Directory holding the log file."""
        return Path.home() / ".local" / "state" / "kvmtop"

    @property
    def log_path(self) -> Path:
        """Log file path."""
        return self.state_dir / "kvmtop.log"

    @property
    def initial_view(self) -> View:
        return View(self.display.view)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ValueError: If the file cannot be parsed or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        try:
            return cls(
                display=_load_display_config(_section(data, "display")),
                network=NetworkConfig(
                    hide=_patterns(_section(data, "network"), "network.hide", defaults.network.hide)
                ),
                storage=StorageConfig(
                    exclude=_patterns(
                        _section(data, "storage"), "storage.exclude", defaults.storage.exclude
                    )
                ),
                logging=_load_logging_config(_section(data, "logging")),
            )
        except ValueError as e:
            raise ValueError(f"{e} in {path}") from e


def _section(data: dict, name: str) -> dict:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ValueError(f"Invalid [{name}]: {section!r}. Must be a table")
    return section


def _patterns(section: dict, name: str, default: list[str]) -> list[str]:
    """Return a list of fnmatch patterns, rejecting anything but strings."""
    key = name.rpartition(".")[2]
    value = section.get(key, default)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"Invalid {name}: {value!r}. Must be a list of strings")
    return list(value)


def _number(section: dict, name: str, default, kinds: tuple[type, ...]):
    key = name.rpartition(".")[2]
    value = section.get(key, default)
    # TOML booleans are ints to Python
    if isinstance(value, bool) or not isinstance(value, kinds):
        expected = "an integer" if kinds == (int,) else "a number"
        raise ValueError(f"Invalid {name}: {value!r}. Must be {expected}")
    return value


def _load_display_config(data: dict) -> DisplayConfig:
    """Load display config from TOML data, using dataclass defaults for missing fields."""
    d = DisplayConfig()
    interval = float(_number(data, "display.interval", d.interval, (int, float)))
    limit = _number(data, "display.limit", d.limit, (int,))
    view = data.get("view", d.view)
    color = data.get("color", d.color)

    if interval < MIN_INTERVAL:
        raise ValueError(f"Invalid display.interval: {interval!r}. Must be >= {MIN_INTERVAL}")
    if limit <= 0:
        raise ValueError(f"Invalid display.limit: {limit!r}. Must be positive")
    valid_views = {v.value for v in View}
    if not isinstance(view, str) or view not in valid_views:
        raise ValueError(f"Invalid display.view: {view!r}. Must be one of {sorted(valid_views)}")
    if not isinstance(color, bool):
        raise ValueError(f"Invalid display.color: {color!r}. Must be true or false")

    return DisplayConfig(interval=interval, limit=limit, view=view, color=color)


def _load_logging_config(data: dict) -> LoggingConfig:
    """Load logging config from TOML data."""
    d = LoggingConfig()
    level = data.get("level", d.level)
    if not isinstance(level, str) or level.lower() not in _LOG_LEVELS:
        raise ValueError(f"Invalid logging.level: {level!r}. Must be one of {list(_LOG_LEVELS)}")
    return LoggingConfig(
        level=level.lower(),
        max_bytes=_number(data, "logging.max_bytes", d.max_bytes, (int,)),
        backup_count=_number(data, "logging.backup_count", d.backup_count, (int,)),
    )

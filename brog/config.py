"""Configuration loading for brog.

The configuration lives in ``brog.yaml`` at the root of a brog structure. It is
loaded once per process run into a frozen Configuration that every other
component shares read-only.

Key items:
- Configuration: Immutable configuration snapshot.
- load_config: Parse and validate a config file.
- DEFAULT_CONFIG: Values used for keys missing from the file.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from .errors import ConfigError
from .utils import freeze

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "brog.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "hostname": "localhost",
    "production_port": 80,
    "development_port": 3000,
    "live_reload_port": None,
    "post_path": "posts",
    "page_path": "pages",
    "template_path": "templates",
    "asset_path": "assets",
    "site_title": "A Brog",
    "site": {},
    "posts_per_page": 10,
    "rewatch_delay": 0.25,
    "request_timeout": 10.0,
    "shutdown_grace": 5.0,
    "use_polling": False,
    "log_level": "info",
    "log_file": None,
}

_DIRECTORY_KEYS = ("post_path", "page_path", "template_path")
_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


@dataclass(frozen=True)
class Configuration:
    """Immutable configuration of a brog structure.

    Attributes:
        root: Directory containing the config file.
        post_path: Directory of posts.
        page_path: Directory of pages.
        template_path: Directory of templates.
        asset_path: Directory of static assets, None when absent.
        hostname: Interface the server binds to.
        production_port: Port used by ``brog server``.
        development_port: Port used by ``brog server devel``.
        live_reload_port: Websocket port for live reload in development.
        site_title: Title of the site.
        site_metadata: Free-form metadata passed to templates unchanged.
        posts_per_page: Number of posts on each listing page.
        rewatch_delay: Debounce window for filesystem events, in seconds.
        request_timeout: Socket timeout for each HTTP connection, in seconds.
        shutdown_grace: How long stop waits for in-flight requests, in seconds.
        use_polling: Poll the filesystem instead of native change events.
        log_level: Logging level name.
        log_file: Optional log file path.
    """

    root: Path
    post_path: Path
    page_path: Path
    template_path: Path
    asset_path: Path | None = None
    hostname: str = "localhost"
    production_port: int = 80
    development_port: int = 3000
    live_reload_port: int | None = None
    site_title: str = "A Brog"
    site_metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    posts_per_page: int = 10
    rewatch_delay: float = 0.25
    request_timeout: float = 10.0
    shutdown_grace: float = 5.0
    use_polling: bool = False
    log_level: str = "info"
    log_file: Path | None = None

    def port(self, development: bool = False) -> int:
        """Return the port for the given mode."""
        return self.development_port if development else self.production_port

    def reload_port(self) -> int:
        """Websocket port for live reload; defaults to the development port + 1."""
        if self.live_reload_port is not None:
            return self.live_reload_port
        return self.development_port + 1

    @property
    def watched_paths(self) -> tuple[Path, ...]:
        """Directories whose changes trigger a rebuild."""
        return (self.post_path, self.page_path, self.template_path)

    def check_paths(self) -> None:
        """Verify the post, page and template directories still exist.

        Raises:
            ConfigError: If one of them is missing.
        """
        for key in _DIRECTORY_KEYS:
            directory = getattr(self, key)
            if not directory.is_dir():
                raise ConfigError(f"{key} directory does not exist: {directory}", directory)


def load_config(path: Path) -> Configuration:
    """Load and validate a brog configuration file.

    Args:
        path: The config file, or a directory containing ``brog.yaml``.

    Returns:
        The frozen Configuration, with defaults applied and paths resolved
        against the config file's directory.

    Raises:
        ConfigError: If the file is missing or malformed, a value has the wrong
            type, or a required directory does not exist.
    """
    path = Path(path)
    config_path = path / CONFIG_FILENAME if path.is_dir() else path
    if not config_path.is_file():
        raise ConfigError("config file not found", config_path)
    try:
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML: {exc}", config_path) from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"cannot read config: {exc}", config_path) from exc
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigError("config must be a mapping", config_path)

    unknown = sorted(set(loaded) - set(DEFAULT_CONFIG))
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", config_path, ", ".join(map(str, unknown)))

    values = DEFAULT_CONFIG.copy()
    values.update({k: v for k, v in loaded.items() if k in DEFAULT_CONFIG})
    root = config_path.resolve().parent
    config = Configuration(
        root=root,
        post_path=_directory(values, "post_path", root, config_path),
        page_path=_directory(values, "page_path", root, config_path),
        template_path=_directory(values, "template_path", root, config_path),
        asset_path=_asset_directory(values, root, config_path),
        hostname=_string(values, "hostname", config_path),
        production_port=_port(values, "production_port", config_path),
        development_port=_port(values, "development_port", config_path),
        live_reload_port=(
            None
            if values["live_reload_port"] is None
            else _port(values, "live_reload_port", config_path)
        ),
        site_title=_string(values, "site_title", config_path),
        site_metadata=_metadata(values, config_path),
        posts_per_page=_positive_int(values, "posts_per_page", config_path),
        rewatch_delay=_seconds(values, "rewatch_delay", config_path),
        request_timeout=_seconds(values, "request_timeout", config_path),
        shutdown_grace=_seconds(values, "shutdown_grace", config_path),
        use_polling=_bool(values, "use_polling", config_path),
        log_level=_log_level(values, config_path),
        log_file=_log_file(values, root, config_path),
    )
    _check_disjoint(config, config_path)
    config.check_paths()
    return config


def _check_disjoint(config: Configuration, config_path: Path) -> None:
    """Post, page and template directories may not be equal or nested."""
    directories = [
        ("post_path", config.post_path),
        ("page_path", config.page_path),
        ("template_path", config.template_path),
    ]
    for i, (key, directory) in enumerate(directories):
        for other_key, other in directories[i + 1 :]:
            if directory == other:
                raise ConfigError(f"{key} and {other_key} must be different directories", config_path)
            if directory.is_relative_to(other) or other.is_relative_to(directory):
                raise ConfigError(f"{key} and {other_key} must not be nested", config_path)


def _directory(values: dict[str, Any], key: str, root: Path, config_path: Path) -> Path:
    raw = values[key]
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigError(f"{key} must be a non-empty string", config_path)
    directory = (root / raw).resolve()
    if not directory.is_dir():
        raise ConfigError(f"{key} directory does not exist: {directory}", config_path)
    return directory


def _asset_directory(values: dict[str, Any], root: Path, config_path: Path) -> Path | None:
    raw = values["asset_path"]
    if raw is None:
        return None
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigError("asset_path must be a string", config_path)
    directory = (root / raw).resolve()
    if not directory.is_dir():
        logger.info("No asset directory at %s; /assets/ will not be served", directory)
        return None
    return directory


def _string(values: dict[str, Any], key: str, config_path: Path) -> str:
    value = values[key]
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string", config_path)
    return value


def _port(values: dict[str, Any], key: str, config_path: Path) -> int:
    value = values[key]
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 65535:
        raise ConfigError(f"{key} must be an integer between 0 and 65535", config_path)
    return value


def _positive_int(values: dict[str, Any], key: str, config_path: Path) -> int:
    value = values[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{key} must be a positive integer", config_path)
    return value


def _seconds(values: dict[str, Any], key: str, config_path: Path) -> float:
    value = values[key]
    if isinstance(value, bool) or not isinstance(value, int | float) or value < 0:
        raise ConfigError(f"{key} must be a non-negative number of seconds", config_path)
    return float(value)


def _bool(values: dict[str, Any], key: str, config_path: Path) -> bool:
    value = values[key]
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false", config_path)
    return value


def _metadata(values: dict[str, Any], config_path: Path) -> Mapping[str, Any]:
    value = values["site"]
    if value is None:
        value = {}
    if not isinstance(value, dict):
        raise ConfigError("site must be a mapping of metadata", config_path)
    return freeze(value)


def _log_level(values: dict[str, Any], config_path: Path) -> str:
    value = values["log_level"]
    if not isinstance(value, str) or value.lower() not in _LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(_LOG_LEVELS)}", config_path)
    return value.lower()


def _log_file(values: dict[str, Any], root: Path, config_path: Path) -> Path | None:
    value = values["log_file"]
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError("log_file must be a string", config_path)
    return root / value

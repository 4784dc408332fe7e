"""Configuration loader for pwp.

Values are read from several sources, later sources winning:

1. Built-in defaults.
2. ``~/.config/pwp/config.yml`` (or an override path).
3. Environment variables prefixed with ``PWP_``.
4. Explicit overrides supplied programmatically (the CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export PWP_SITE__PORT=8080
    export PWP_SYNC__REWRITE_CONTENT=false

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``; :meth:`AppConfig.settings` turns it into the per-run
:class:`InstallationSettings` consumed by every bootstrap component.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in packaging
    raise RuntimeError(
        "PyYAML is required to load pwp configuration. Install with "
        "`pip install pwp` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "PWP_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

AUTO_PORT = "auto"
DEFAULT_HTTP_PORT = "80"

WORDPRESS_DOWNLOAD = "https://wordpress.org/latest.zip"
SQLITE_ADDON_DOWNLOAD = "https://downloads.wordpress.org/plugin/sqlite-integration.zip"


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


def site_url(host: str, port: str) -> str:
    """Return the URL a site on *host*/*port* is reachable at.

    The conventional HTTP port is omitted so the URL matches what WordPress
    stores for a default install.
    """
    if str(port) == DEFAULT_HTTP_PORT:
        return f"http://{host}"
    return f"http://{host}:{port}"


@dataclass(frozen=True)
class InstallationSettings:
    """Immutable per-run settings shared by every bootstrap component."""

    host: str = "localhost"
    port: str = AUTO_PORT
    install_path: Path = Path("wordpress")
    server_executable: str = "php"

    @property
    def site_url(self) -> str:
        """URL of the negotiated endpoint."""
        return site_url(self.host, self.port)

    @property
    def router_path(self) -> Path:
        return self.install_path / "router.php"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "host": self.host,
            "port": self.port,
            "install_path": str(self.install_path),
            "server_executable": self.server_executable,
        }


@dataclass(frozen=True)
class SiteConfig:
    """Defaults for the endpoint and installation flags."""

    host: str = "localhost"
    port: str = AUTO_PORT
    path: Path = Path("wordpress")
    php: str = "php"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"host": self.host, "port": self.port, "path": str(self.path), "php": self.php}


@dataclass(frozen=True)
class DownloadsConfig:
    """Remote archive locations."""

    wordpress: str = WORDPRESS_DOWNLOAD
    addon: str = SQLITE_ADDON_DOWNLOAD
    timeout: float = 60.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"wordpress": self.wordpress, "addon": self.addon, "timeout": self.timeout}


@dataclass(frozen=True)
class WordPressConfig:
    """Layout details of the provisioned WordPress tree."""

    table_prefix: str = "wp_"
    store_path: Path = Path("wp-content/database/.ht.sqlite")
    dropin_name: str = "db.php"
    dropin_target: Path = Path("wp-content/db.php")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "table_prefix": self.table_prefix,
            "store_path": str(self.store_path),
            "dropin_name": self.dropin_name,
            "dropin_target": str(self.dropin_target),
        }


@dataclass(frozen=True)
class SyncConfig:
    """Endpoint synchronisation behaviour."""

    rewrite_content: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"rewrite_content": self.rewrite_content}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for pwp."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path
    open_browser: bool
    site: SiteConfig
    downloads: DownloadsConfig
    wordpress: WordPressConfig
    sync: SyncConfig

    def settings(self) -> InstallationSettings:
        """Build the per-run installation settings from the ``site`` section."""
        return InstallationSettings(
            host=self.site.host,
            port=self.site.port,
            install_path=self.site.path,
            server_executable=self.site.php,
        )

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "open_browser": self.open_browser,
            "site": self.site.to_dict(),
            "downloads": self.downloads.to_dict(),
            "wordpress": self.wordpress.to_dict(),
            "sync": self.sync.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/pwp/config.yml",
    "logs_dir": "~/.local/state/pwp/logs",
    "templates_dir": "~/.config/pwp/templates",
    "open_browser": True,
    "site": {
        "host": "localhost",
        "port": AUTO_PORT,
        "path": "wordpress",
        "php": "php",
    },
    "downloads": {
        "wordpress": WORDPRESS_DOWNLOAD,
        "addon": SQLITE_ADDON_DOWNLOAD,
        "timeout": 60.0,
    },
    "wordpress": {
        "table_prefix": "wp_",
        "store_path": "wp-content/database/.ht.sqlite",
        "dropin_name": "db.php",
        "dropin_target": "wp-content/db.php",
    },
    "sync": {
        "rewrite_content": True,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    "site": {"host", "port", "path", "php"},
    "downloads": {"wordpress", "addon", "timeout"},
    "wordpress": {"table_prefix", "store_path", "dropin_name", "dropin_target"},
    "sync": {"rewrite_content"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def normalize_port(value: object, label: str = "site.port") -> str:
    """Return *value* as a port string (``"auto"`` or ``1``-``65535``)."""
    if isinstance(value, bool):
        raise ConfigError(f"{label} must be 'auto' or a port number. Got boolean {value!r}.")
    if isinstance(value, int):
        text = str(value)
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise ConfigError(f"{label} must be 'auto' or a port number. Got {type(value).__name__}.")
    if text.lower() == AUTO_PORT:
        return AUTO_PORT
    if not text.isdigit():
        raise ConfigError(f"{label} must be 'auto' or a port number. Got {text!r}.")
    number = int(text)
    if number < 1 or number > 65535:
        raise ConfigError(f"{label} must be between 1 and 65535. Got {number}.")
    return str(number)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    site_map = _as_dict(raw.get("site"), "site")
    if "port" in site_map:
        normalize_port(site_map["port"])

    wordpress_map = _as_dict(raw.get("wordpress"), "wordpress")
    prefix = wordpress_map.get("table_prefix")
    if prefix is not None:
        text = str(prefix)
        if not text or not all(char.isalnum() or char == "_" for char in text):
            raise ConfigError(
                "wordpress.table_prefix may only contain letters, digits and underscores."
            )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    site_mapping = _as_dict(raw.get("site"), "site")
    site = SiteConfig(
        host=_expect_non_empty(site_mapping.get("host", "localhost"), "site.host"),
        port=normalize_port(site_mapping.get("port", AUTO_PORT)),
        path=_to_path(site_mapping.get("path", "wordpress")),
        php=_expect_non_empty(site_mapping.get("php", "php"), "site.php"),
    )

    downloads_mapping = _as_dict(raw.get("downloads"), "downloads")
    downloads = DownloadsConfig(
        wordpress=_expect_non_empty(
            downloads_mapping.get("wordpress", WORDPRESS_DOWNLOAD), "downloads.wordpress"
        ),
        addon=_expect_non_empty(
            downloads_mapping.get("addon", SQLITE_ADDON_DOWNLOAD), "downloads.addon"
        ),
        timeout=_expect_positive_float(
            downloads_mapping.get("timeout"), "downloads.timeout", default=60.0
        ),
    )

    wordpress_mapping = _as_dict(raw.get("wordpress"), "wordpress")
    wordpress = WordPressConfig(
        table_prefix=str(wordpress_mapping.get("table_prefix", "wp_")),
        store_path=_to_relative_path(
            wordpress_mapping.get("store_path", "wp-content/database/.ht.sqlite"),
            "wordpress.store_path",
        ),
        dropin_name=_expect_non_empty(
            wordpress_mapping.get("dropin_name", "db.php"), "wordpress.dropin_name"
        ),
        dropin_target=_to_relative_path(
            wordpress_mapping.get("dropin_target", "wp-content/db.php"),
            "wordpress.dropin_target",
        ),
    )

    sync_mapping = _as_dict(raw.get("sync"), "sync")
    sync = SyncConfig(
        rewrite_content=_expect_bool(
            sync_mapping.get("rewrite_content"), "sync.rewrite_content", default=True
        ),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        open_browser=_expect_bool(raw.get("open_browser"), "open_browser", default=True),
        site=site,
        downloads=downloads,
        wordpress=wordpress,
        sync=sync,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _to_relative_path(value: object, label: str) -> Path:
    path = _to_path(value)
    if path.is_absolute() or ".." in path.parts:
        raise ConfigError(f"{label} must be a path relative to the installation root.")
    return path


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_non_empty(value: object, label: str) -> str:
    if isinstance(value, bool) or value is None:
        raise ConfigError(f"Expected {label} to be a non-empty string. Got {value!r}.")
    text = str(value).strip()
    if not text:
        raise ConfigError(f"Expected {label} to be a non-empty string.")
    return text


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AUTO_PORT",
    "AppConfig",
    "ConfigError",
    "DownloadsConfig",
    "InstallationSettings",
    "SiteConfig",
    "SyncConfig",
    "WordPressConfig",
    "load_config",
    "normalize_port",
    "site_url",
]

"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from pwp.config import (
    AUTO_PORT,
    AppConfig,
    ConfigError,
    InstallationSettings,
    load_config,
    normalize_port,
    site_url,
)


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.site.host == "localhost"
    assert config.site.port == AUTO_PORT
    assert config.site.path == Path("wordpress")
    assert config.site.php == "php"
    assert config.open_browser is True
    assert config.wordpress.table_prefix == "wp_"
    assert config.wordpress.store_path == Path("wp-content/database/.ht.sqlite")
    assert config.wordpress.dropin_target == Path("wp-content/db.php")
    assert config.sync.rewrite_content is True
    assert config.downloads.timeout == 60.0


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "pwp.yml"
    cfg.write_text(
        "open_browser: false\n"
        "site:\n"
        "  host: 127.0.0.1\n"
        "  port: 8080\n"
        "  path: blog\n"
        "wordpress:\n"
        "  table_prefix: blog_\n"
        "sync:\n"
        "  rewrite_content: false\n"
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.open_browser is False
    assert config.site.host == "127.0.0.1"
    assert config.site.port == "8080"
    assert config.site.path == Path("blog")
    assert config.wordpress.table_prefix == "blog_"
    assert config.sync.rewrite_content is False


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "pwp.yml"
    cfg.write_text("site:\n  port: 8080\n")
    env = {
        "PWP_CONFIG_FILE": str(cfg),
        "PWP_SITE__PORT": "9090",
        "PWP_SITE__PHP": "/usr/bin/php8.3",
        "PWP_OPEN_BROWSER": "false",
        "PWP_LOGS_DIR": str(tmp_path / "logs"),
        "PWP_DOWNLOADS__TIMEOUT": "15",
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.site.port == "9090"
    assert config.site.php == "/usr/bin/php8.3"
    assert config.open_browser is False
    assert config.logs_dir == tmp_path / "logs"
    assert config.downloads.timeout == 15.0


def test_overrides_beat_environment(tmp_path: Path) -> None:
    """Programmatic overrides (CLI flags) win over every other source."""
    env = {"PWP_SITE__HOST": "example.test"}

    config = load_config(
        config_file=tmp_path / "missing.yml",
        env=env,
        overrides={"site": {"host": "localhost", "port": "8081"}},
    )

    assert config.site.host == "localhost"
    assert config.site.port == "8081"


def test_settings_builds_installation_settings(tmp_path: Path) -> None:
    """``AppConfig.settings`` maps the site section onto run settings."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={"site": {"path": str(tmp_path / "site"), "port": 8080}},
    )

    settings = config.settings()

    assert settings == InstallationSettings(
        host="localhost",
        port="8080",
        install_path=tmp_path / "site",
        server_executable="php",
    )
    assert settings.router_path == tmp_path / "site" / "router.php"
    assert settings.site_url == "http://localhost:8080"


def test_unknown_keys_raise(tmp_path: Path) -> None:
    """Unknown keys produce ConfigError."""
    cfg = tmp_path / "pwp.yml"
    cfg.write_text("unexpected: true\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_section_keys_raise(tmp_path: Path) -> None:
    """Unknown keys inside a section produce ConfigError."""
    cfg = tmp_path / "pwp.yml"
    cfg.write_text("site:\n  hostname: localhost\n")

    with pytest.raises(ConfigError, match="site"):
        load_config(config_file=cfg, env={})


def test_non_mapping_file_rejected(tmp_path: Path) -> None:
    """A config file must hold a mapping at the top level."""
    cfg = tmp_path / "pwp.yml"
    cfg.write_text("- one\n- two\n")

    with pytest.raises(ConfigError, match="mapping"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize("prefix", ["wp-", "wp_; DROP", ""])
def test_invalid_table_prefix_rejected(tmp_path: Path, prefix: str) -> None:
    """Table prefixes are restricted to identifier characters."""
    with pytest.raises(ConfigError):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={},
            overrides={"wordpress": {"table_prefix": prefix}},
        )


def test_absolute_store_path_rejected(tmp_path: Path) -> None:
    """Store paths must stay inside the installation root."""
    with pytest.raises(ConfigError, match="store_path"):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={},
            overrides={"wordpress": {"store_path": "../outside.sqlite"}},
        )


def test_non_positive_timeout_rejected(tmp_path: Path) -> None:
    """Download timeouts must be positive numbers."""
    with pytest.raises(ConfigError, match="timeout"):
        load_config(config_file=tmp_path / "missing.yml", env={"PWP_DOWNLOADS__TIMEOUT": "0"})


@pytest.mark.parametrize(
    ("value", "expected"),
    [("auto", "auto"), ("AUTO", "auto"), (" 8080 ", "8080"), (80, "80"), ("65535", "65535")],
)
def test_normalize_port_accepts_valid_values(value: object, expected: str) -> None:
    """Ports normalise to ``auto`` or a decimal string."""
    assert normalize_port(value) == expected


@pytest.mark.parametrize("value", ["0", "65536", "http", True, 1.5, "-1"])
def test_normalize_port_rejects_invalid_values(value: object) -> None:
    """Out-of-range or non-numeric ports are rejected."""
    with pytest.raises(ConfigError):
        normalize_port(value)


def test_site_url_omits_default_http_port() -> None:
    """Port 80 is left out of the URL; other ports are kept."""
    assert site_url("localhost", "80") == "http://localhost"
    assert site_url("localhost", "8080") == "http://localhost:8080"

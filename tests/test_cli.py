"""Tests for the pwp command line entry point."""
from __future__ import annotations

import io
import json
import sqlite3
import zipfile
from collections.abc import Sequence
from pathlib import Path

import pytest
from typer.testing import CliRunner

from pwp import __version__
from pwp.cli import app
from pwp.exit_codes import ExitCode
from pwp.fetcher import DownloadError, Fetcher
from pwp.providers.php_server import PhpServerProvider, ServerError

runner = CliRunner()


def _prepare_environment(tmp_path: Path) -> dict[str, str]:
    """Point every pwp location at *tmp_path*."""
    return {
        "PWP_CONFIG_FILE": str(tmp_path / "config.yml"),
        "PWP_LOGS_DIR": str(tmp_path / "logs"),
        "PWP_TEMPLATES_DIR": str(tmp_path / "templates"),
    }


def _last_operation(tmp_path: Path) -> dict[str, object]:
    lines = (tmp_path / "logs" / "operations.jsonl").read_text().splitlines()
    return json.loads(lines[-1])


def _zip_bytes(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as handle:
        for name, data in members.items():
            handle.writestr(name, data)
    return buffer.getvalue()


def _create_store(root: Path, home: str) -> Path:
    store = root / "wp-content" / "database" / ".ht.sqlite"
    store.parent.mkdir(parents=True)
    with sqlite3.connect(store) as connection:
        connection.execute("CREATE TABLE wp_options (option_name TEXT, option_value TEXT)")
        connection.execute("CREATE TABLE wp_posts (guid TEXT, post_content TEXT)")
        connection.execute("CREATE TABLE wp_postmeta (meta_value TEXT)")
        connection.executemany(
            "INSERT INTO wp_options VALUES (?, ?)", [("home", home), ("siteurl", home)]
        )
    connection.close()
    return store


def _read_home(store: Path) -> str:
    with sqlite3.connect(store) as connection:
        (home,) = connection.execute(
            "SELECT option_value FROM wp_options WHERE option_name = 'home'"
        ).fetchone()
    connection.close()
    return str(home)


class FakeProcess:
    """Server process that exits immediately."""

    def __init__(self, returncode: int = 0) -> None:
        self.returncode = returncode

    def wait(self) -> int:
        return self.returncode

    def terminate(self) -> None:  # pragma: no cover - never interrupted here
        pass


@pytest.fixture()
def spawned(monkeypatch: pytest.MonkeyPatch) -> list[Sequence[str]]:
    """Record server launches instead of running PHP."""
    calls: list[Sequence[str]] = []

    def fake_spawn(self: PhpServerProvider, args: Sequence[str]) -> FakeProcess:
        calls.append(list(args))
        return FakeProcess(0)

    monkeypatch.setattr(PhpServerProvider, "_spawn", fake_spawn)
    return calls


def test_version_option_outputs_package_version(tmp_path: Path) -> None:
    """CLI ``--version`` flag emits the package version."""
    result = runner.invoke(app, ["--version"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0
    assert __version__ in result.output


def test_help_lists_single_dash_flags(tmp_path: Path) -> None:
    """Both ``--flag`` and ``-flag`` spellings are advertised."""
    result = runner.invoke(app, ["--help"], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0
    for flag in ("-host", "-port", "-path", "-php"):
        assert flag in result.output


def test_existing_site_is_synced_and_served(
    tmp_path: Path,
    spawned: list[Sequence[str]],
) -> None:
    """An existing install has its URL rewritten before the server starts."""
    root = tmp_path / "site"
    store = _create_store(root, "http://localhost:8080")

    result = runner.invoke(
        app,
        ["-port", "9090", "-path", str(root), "-php", "/opt/php/bin/php", "--no-browser"],
        env=_prepare_environment(tmp_path),
    )

    assert result.exit_code == 0, result.output
    assert _read_home(store) == "http://localhost:9090"
    assert spawned == [
        [
            "/opt/php/bin/php",
            "-S",
            "localhost:9090",
            "-t",
            str(root),
            str(root / "router.php"),
        ]
    ]
    assert "http://localhost:9090" in result.output

    record = _last_operation(tmp_path)
    assert record["command"] == "run"
    assert record["args"]["port"] == "9090"
    assert record["result"]["status"] == "success"
    assert record["result"]["context"]["sync"] == "updated"
    step_names = [step["name"] for step in record["steps"]]
    assert step_names[0] == "negotiate"
    assert "provision" in step_names
    assert "sync.options" in step_names


def test_first_run_provisions_site(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    spawned: list[Sequence[str]],
) -> None:
    """A missing install directory is downloaded and configured."""
    payloads = {
        "https://example.test/wp.zip": _zip_bytes({"wordpress/index.php": b"<?php"}),
        "https://example.test/addon.zip": _zip_bytes(
            {"sqlite-integration/db.php": b"<?php // drop-in"}
        ),
    }

    def fake_download(self: Fetcher, url: str, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(payloads[url])
        return destination

    monkeypatch.setattr(Fetcher, "download", fake_download)
    env = {
        **_prepare_environment(tmp_path),
        "PWP_DOWNLOADS__WORDPRESS": "https://example.test/wp.zip",
        "PWP_DOWNLOADS__ADDON": "https://example.test/addon.zip",
    }
    root = tmp_path / "site"

    result = runner.invoke(
        app,
        ["--port", "8080", "--path", str(root), "--no-browser"],
        env=env,
    )

    assert result.exit_code == 0, result.output
    assert (root / "index.php").exists()
    assert (root / "wp-content" / "db.php").exists()
    assert (root / "wp-config.php").exists()
    assert (root / "router.php").exists()
    record = _last_operation(tmp_path)
    assert record["result"]["context"]["provisioned"] is True
    assert record["result"]["context"]["sync"] == "missing-store"
    assert len(spawned) == 1


def test_download_failure_exits_with_provider_code(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    spawned: list[Sequence[str]],
) -> None:
    """Provisioning failures stop the run before the server starts."""

    def fail_download(self: Fetcher, url: str, destination: Path) -> Path:
        raise DownloadError(f"Failed to fetch {url}: offline")

    monkeypatch.setattr(Fetcher, "download", fail_download)
    root = tmp_path / "site"

    result = runner.invoke(
        app,
        ["--port", "8080", "--path", str(root), "--no-browser"],
        env=_prepare_environment(tmp_path),
    )

    assert result.exit_code == ExitCode.PROVIDER
    assert not root.exists()
    assert spawned == []
    record = _last_operation(tmp_path)
    assert record["result"]["status"] == "error"
    assert record["result"]["rc"] == ExitCode.PROVIDER


def test_invalid_port_exits_with_validation_code(
    tmp_path: Path,
    spawned: list[Sequence[str]],
) -> None:
    """Out-of-range ports are rejected before anything happens."""
    result = runner.invoke(
        app,
        ["--port", "70000", "--path", str(tmp_path / "site")],
        env=_prepare_environment(tmp_path),
    )

    assert result.exit_code == ExitCode.VALIDATION
    assert "65535" in result.output
    assert spawned == []
    assert not (tmp_path / "site").exists()


def test_config_file_supplies_defaults(
    tmp_path: Path,
    spawned: list[Sequence[str]],
) -> None:
    """Settings from the YAML file apply when flags are omitted."""
    root = tmp_path / "from-config"
    root.mkdir()
    config_file = tmp_path / "config.yml"
    config_file.write_text(
        "open_browser: false\n"
        "site:\n"
        "  host: 127.0.0.1\n"
        "  port: 8181\n"
        f"  path: {root}\n"
    )

    result = runner.invoke(app, [], env=_prepare_environment(tmp_path))

    assert result.exit_code == 0, result.output
    assert spawned[0][2] == "127.0.0.1:8181"
    assert spawned[0][4] == str(root)


def test_server_failure_is_logged_as_warning(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A PHP server that cannot start does not change the exit code."""

    def fail_spawn(self: PhpServerProvider, args: Sequence[str]) -> FakeProcess:
        raise ServerError("Cannot start php: not found")

    monkeypatch.setattr(PhpServerProvider, "_spawn", fail_spawn)
    root = tmp_path / "site"
    root.mkdir()

    result = runner.invoke(
        app,
        ["--port", "8080", "--path", str(root), "--no-browser"],
        env=_prepare_environment(tmp_path),
    )

    assert result.exit_code == 0
    record = _last_operation(tmp_path)
    assert record["result"]["status"] == "warning"
    assert "server could not be started" in record["result"]["warnings"]

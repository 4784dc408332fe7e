"""Typer-powered command line entry point for ``pwp``.

A single invocation negotiates the endpoint, provisions the WordPress tree on
first use, brings the stored site URL in line with the endpoint and then
serves the site with PHP's built-in server until it exits.
"""
from __future__ import annotations

import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, InstallationSettings, load_config
from .exit_codes import ExitCode
from .fetcher import Fetcher
from .logging import OperationScope, StructuredLogger
from .ports import NetworkUnavailableError, negotiate_settings
from .progress import PhaseProgress
from .providers import InstallResult, PhpServerProvider, ProvisionError, SiteInstaller
from .site_config import SiteConfigGenerator
from .sync import EndpointSynchronizer, SyncError, SyncResult
from .templates import TemplateEngine

console = Console()
err_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"pwp {__version__}")
        raise typer.Exit(code=ExitCode.OK)


HOST_OPTION = typer.Option(
    None,
    "--host",
    "-host",
    help="Host name to serve the site on (default: localhost).",
)
PORT_OPTION = typer.Option(
    None,
    "--port",
    "-port",
    help="Port to serve on, or 'auto' to try 80 and fall back to a free port (default: auto).",
)
PATH_OPTION = typer.Option(
    None,
    "--path",
    "-path",
    file_okay=False,
    help="Installation directory (default: wordpress).",
)
PHP_OPTION = typer.Option(
    None,
    "--php",
    "-php",
    help="PHP executable used to serve the site (default: php).",
)
CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to pwp's YAML config file.",
)
NO_BROWSER_OPTION = typer.Option(
    False,
    "--no-browser",
    help="Do not open the site in a browser once the server is running.",
)
VERSION_OPTION = typer.Option(
    False,
    "--version",
    "-V",
    callback=_version_callback,
    is_eager=True,
    help="Show the pwp version and exit.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Portable WordPress.

        Downloads WordPress and the SQLite Integration drop-in on first use,
        keeps the stored site URL in step with the host and port, and serves
        the site with PHP's built-in web server.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by the bootstrap phases."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    progress: PhaseProgress
    installer: SiteInstaller
    synchronizer: EndpointSynchronizer
    server: PhpServerProvider


def _build_runtime(config: AppConfig) -> RuntimeContext:
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    progress = PhaseProgress(console)
    generator = SiteConfigGenerator(
        templates=templates,
        table_prefix=config.wordpress.table_prefix,
    )
    installer = SiteInstaller(
        fetcher=Fetcher(timeout=config.downloads.timeout),
        config_generator=generator,
        wordpress_url=config.downloads.wordpress,
        addon_url=config.downloads.addon,
        dropin_name=config.wordpress.dropin_name,
        dropin_target=config.wordpress.dropin_target,
        progress=progress,
    )
    synchronizer = EndpointSynchronizer(
        store_path=config.wordpress.store_path,
        table_prefix=config.wordpress.table_prefix,
        rewrite_content=config.sync.rewrite_content,
    )
    server = PhpServerProvider(console=console, open_browser=config.open_browser)
    return RuntimeContext(
        config=config,
        logger=logger,
        templates=templates,
        progress=progress,
        installer=installer,
        synchronizer=synchronizer,
        server=server,
    )


def _collect_overrides(
    *,
    host: str | None,
    port: str | None,
    path: Path | None,
    php: str | None,
    no_browser: bool,
) -> dict[str, object]:
    """Translate explicitly supplied flags into config overrides."""
    site: dict[str, object] = {}
    if host is not None:
        site["host"] = host
    if port is not None:
        site["port"] = port
    if path is not None:
        site["path"] = str(path)
    if php is not None:
        site["php"] = php
    overrides: dict[str, object] = {}
    if site:
        overrides["site"] = site
    if no_browser:
        overrides["open_browser"] = False
    return overrides


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    err_console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _negotiate(
    settings: InstallationSettings,
    op: OperationScope,
) -> InstallationSettings:
    try:
        negotiated = negotiate_settings(settings)
    except NetworkUnavailableError as exc:
        _command_error(
            op,
            f"negotiate: {exc}",
            rc=ExitCode.ENVIRONMENT,
            errors=[str(exc)],
        )
    detail = f"{negotiated.host}:{negotiated.port}"
    if settings.port != negotiated.port:
        detail = f"{detail} (requested {settings.port})"
    op.add_step("negotiate", status="success", detail=detail)
    return negotiated


def _provision(
    runtime: RuntimeContext,
    settings: InstallationSettings,
    op: OperationScope,
) -> InstallResult:
    try:
        result = runtime.installer.install(settings, scope=op)
    except ProvisionError as exc:
        _command_error(
            op,
            f"provision: {exc}",
            rc=ExitCode.PROVIDER,
            errors=[f"{exc.phase}: {exc}"],
        )
    if not result.skipped:
        console.print(f"[green]Provisioned WordPress at {result.path}.[/green]")
    return result


def _synchronize(
    runtime: RuntimeContext,
    settings: InstallationSettings,
    op: OperationScope,
) -> SyncResult | None:
    try:
        result = runtime.synchronizer.synchronize(settings, scope=op)
    except SyncError as exc:
        err_console.print(f"[yellow]synchronize: {exc}[/yellow]")
        op.add_step("sync", status="error", detail=str(exc))
        return None
    if result.changed:
        console.print(
            f"Updated site URL from {result.previous_url} to {result.target_url}."
        )
    return result


def _render_summary(
    settings: InstallationSettings,
    install: InstallResult,
    sync: SyncResult | None,
) -> None:
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Site", settings.site_url)
    table.add_row("Path", str(settings.install_path))
    table.add_row("Provisioned", "existing" if install.skipped else "new")
    table.add_row("URL sync", sync.status if sync is not None else "failed")
    console.print(table)


@app.command()
def run(
    host: str | None = HOST_OPTION,
    port: str | None = PORT_OPTION,
    path: Path | None = PATH_OPTION,
    php: str | None = PHP_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    no_browser: bool = NO_BROWSER_OPTION,
    version: bool = VERSION_OPTION,
) -> None:
    """Provision, synchronise and serve a portable WordPress site."""
    overrides = _collect_overrides(
        host=host,
        port=port,
        path=path,
        php=php,
        no_browser=no_browser,
    )
    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        err_console.print(f"[red]config: {exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    runtime = _build_runtime(config)
    requested = config.settings()
    with runtime.logger.operation(
        "run",
        args={**requested.to_dict(), "open_browser": config.open_browser},
        target={"kind": "site", "path": str(requested.install_path)},
    ) as op:
        settings = _negotiate(requested, op)
        install = _provision(runtime, settings, op)
        sync = _synchronize(runtime, settings, op)
        _render_summary(settings, install, sync)

        returncode = runtime.server.serve(settings, scope=op)
        context = {
            "site_url": settings.site_url,
            "provisioned": not install.skipped,
            "sync": sync.status if sync is not None else "failed",
            "server_exit": returncode,
        }
        warnings: list[str] = []
        if sync is None:
            warnings.append("site URL synchronisation failed")
        if returncode is None:
            warnings.append("server could not be started")
        elif returncode != 0:
            warnings.append(f"server exited with status {returncode}")
        if warnings:
            op.warning("Site served with warnings.", warnings=warnings, context=context)
        else:
            op.success("Site served.", changed=0 if install.skipped else 1, context=context)


def main() -> None:
    """Console script entry point."""
    app()

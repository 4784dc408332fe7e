"""Run PHP's built-in web server against a provisioned installation."""
from __future__ import annotations

import subprocess
import threading
import webbrowser
from collections.abc import Sequence
from dataclasses import dataclass

from rich.console import Console

from ..config import InstallationSettings
from ..logging import OperationScope


class ServerError(RuntimeError):
    """Raised when the PHP server process cannot be started."""


@dataclass(slots=True)
class PhpServerProvider:
    """Launch and supervise ``php -S`` for a site."""

    console: Console
    open_browser: bool = True

    def command(self, settings: InstallationSettings) -> list[str]:
        """Return the argument vector that serves *settings*."""
        return [
            settings.server_executable,
            "-S",
            f"{settings.host}:{settings.port}",
            "-t",
            str(settings.install_path),
            str(settings.router_path),
        ]

    def serve(
        self,
        settings: InstallationSettings,
        *,
        scope: OperationScope | None = None,
    ) -> int | None:
        """Start the server, open a browser, and block until the server exits.

        Returns the server's exit status, or ``None`` when it could not be
        started. Neither outcome is raised to the caller.
        """
        args = self.command(settings)
        self.console.print("Starting built-in PHP server.")
        self.console.print(settings.site_url)
        self.console.print("Press Ctrl-C to exit.")

        try:
            process = self._spawn(args)
        except ServerError as exc:
            self.console.print(f"[red]{exc}[/red]")
            _step(scope, "server.start", "error", str(exc))
            return None
        _step(scope, "server.start", "success", " ".join(args))

        self.open_viewer(settings.site_url, scope=scope)

        returncode = self._wait(process)
        status = "success" if returncode == 0 else "warning"
        _step(scope, "server.exit", status, f"exit {returncode}")
        self.console.print(f"PHP server finished with exit status {returncode}.")
        return returncode

    def open_viewer(
        self,
        url: str,
        *,
        scope: OperationScope | None = None,
    ) -> threading.Thread | None:
        """Open *url* in a browser without blocking; failures are ignored."""
        if not self.open_browser:
            _step(scope, "viewer.open", "skipped", "browser launch disabled")
            return None
        thread = threading.Thread(target=_open_url, args=(url,), name="pwp-viewer", daemon=True)
        thread.start()
        _step(scope, "viewer.open", "info", url)
        return thread

    # ------------------------------------------------------------------
    def _spawn(self, args: Sequence[str]) -> subprocess.Popen[bytes]:
        try:
            return subprocess.Popen(list(args))  # noqa: S603
        except OSError as exc:
            raise ServerError(f"Cannot start {args[0]}: {exc}") from exc

    def _wait(self, process: subprocess.Popen[bytes]) -> int:
        try:
            return process.wait()
        except KeyboardInterrupt:
            process.terminate()
            return process.wait()


def _open_url(url: str) -> None:
    try:
        webbrowser.open(url, new=2)
    except (webbrowser.Error, OSError):
        # Not every platform has a browser to hand the URL to.
        return


def _step(scope: OperationScope | None, name: str, status: str, detail: str) -> None:
    if scope is not None:
        scope.add_step(name, status=status, detail=detail)


__all__ = ["PhpServerProvider", "ServerError"]

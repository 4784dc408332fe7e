"""Endpoint negotiation for the local web server."""
from __future__ import annotations

import socket
from dataclasses import replace

from .config import AUTO_PORT, InstallationSettings

PREFERRED_PORT = 80


class NetworkUnavailableError(RuntimeError):
    """Raised when no TCP port can be bound on the requested host."""


def negotiate_port(settings: InstallationSettings, *, preferred_port: int = PREFERRED_PORT) -> str:
    """Return the port the site should be served on.

    Priority is strict: an explicit port from the user, then
    *preferred_port* if it can be bound, then whatever ephemeral port the
    operating system hands out. Probe sockets are closed before returning so
    the server can bind the port itself.
    """
    if settings.port != AUTO_PORT:
        return settings.port

    try:
        _probe(settings.host, preferred_port)
    except OSError:
        return str(_free_port(settings.host))
    return str(preferred_port)


def negotiate_settings(
    settings: InstallationSettings,
    *,
    preferred_port: int = PREFERRED_PORT,
) -> InstallationSettings:
    """Return a copy of *settings* with the negotiated port filled in."""
    port = negotiate_port(settings, preferred_port=preferred_port)
    if port == settings.port:
        return settings
    return replace(settings, port=port)


def _free_port(host: str) -> int:
    """Ask the kernel for a port that is free on *host* right now."""
    try:
        return _probe(host, 0)
    except OSError as exc:
        raise NetworkUnavailableError(f"Unable to bind any TCP port on {host!r}: {exc}") from exc


def _probe(host: str, port: int) -> int:
    """Bind and listen on (*host*, *port*), returning the bound port."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.create_server((host, port), family=family) as listener:
        return int(listener.getsockname()[1])


__all__ = [
    "NetworkUnavailableError",
    "PREFERRED_PORT",
    "negotiate_port",
    "negotiate_settings",
]

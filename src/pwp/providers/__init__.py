"""Provider interfaces for pwp."""
from __future__ import annotations

from .php_server import PhpServerProvider, ServerError
from .site_installer import InstallResult, ProvisionError, SiteInstaller

__all__ = [
    "InstallResult",
    "PhpServerProvider",
    "ProvisionError",
    "ServerError",
    "SiteInstaller",
]

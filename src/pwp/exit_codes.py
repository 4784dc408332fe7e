"""Process exit codes reported by ``pwp``."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit statuses of a ``pwp`` run.

    The PHP server's own exit status is logged but never becomes the process
    exit code.
    """

    OK = 0
    # Invalid flags or configuration.
    VALIDATION = 2
    # No TCP port could be bound on the requested host.
    ENVIRONMENT = 3
    # Download, extraction or configuration of the site failed.
    PROVIDER = 4


__all__ = ["ExitCode"]

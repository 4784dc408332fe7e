"""Download remote archives to local files."""
from __future__ import annotations

import http.client
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import IO

from . import __version__

USER_AGENT = f"pwp/{__version__}"


class DownloadError(RuntimeError):
    """Raised when a remote resource cannot be fetched or stored."""


class Fetcher:
    """Fetch URLs into files on disk."""

    def __init__(self, *, timeout: float = 60.0) -> None:
        """Initialise the fetcher with a per-request socket timeout."""
        self.timeout = timeout

    def download(self, url: str, destination: Path) -> Path:
        """Copy the body behind *url* into *destination* and return the path.

        A partially written destination is removed when the transfer fails.
        """
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadError(f"Cannot create {destination.parent}: {exc}") from exc

        try:
            stream = self._open_stream(url)
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as exc:
            raise DownloadError(f"Failed to fetch {url}: {exc}") from exc

        try:
            with stream, destination.open("wb") as out:
                shutil.copyfileobj(stream, out)
        except (http.client.HTTPException, OSError) as exc:
            destination.unlink(missing_ok=True)
            raise DownloadError(f"Failed to download {url} to {destination}: {exc}") from exc
        return destination

    def _open_stream(self, url: str) -> IO[bytes]:
        """Open *url* and return a readable byte stream (isolated for testing)."""
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        return urllib.request.urlopen(request, timeout=self.timeout)  # noqa: S310


__all__ = ["DownloadError", "Fetcher"]

"""Keep the URL stored in the WordPress database in line with the endpoint.

WordPress records its own address in the ``home`` and ``siteurl`` options and
embeds it in post GUIDs, post bodies and post metadata. When the negotiated
endpoint changes between runs those values are rewritten so the site keeps
linking to itself.
"""
from __future__ import annotations

import sqlite3
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path

from .config import InstallationSettings
from .logging import OperationScope

SYNC_MISSING_STORE = "missing-store"
SYNC_UNAVAILABLE = "unavailable"
SYNC_UNCHANGED = "unchanged"
SYNC_UPDATED = "updated"

# (table suffix, column) pairs that may embed the site URL.
CONTENT_COLUMNS = (
    ("posts", "guid"),
    ("posts", "post_content"),
    ("postmeta", "meta_value"),
)


class StoreUnavailableError(RuntimeError):
    """Raised when the store exists but cannot be opened or queried."""


class SyncError(RuntimeError):
    """Raised when rewriting the stored URL fails."""


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Outcome of a synchronisation pass."""

    status: str
    store: Path
    target_url: str
    previous_url: str | None = None
    options_updated: int = 0
    content_updated: int = 0
    detail: str | None = None

    @property
    def changed(self) -> bool:
        return self.status == SYNC_UPDATED


@dataclass(slots=True)
class EndpointSynchronizer:
    """Rewrite persisted site URLs when the negotiated endpoint differs."""

    store_path: Path = Path("wp-content/database/.ht.sqlite")
    table_prefix: str = "wp_"
    rewrite_content: bool = True

    def __post_init__(self) -> None:
        """Reject table prefixes that cannot be safely interpolated into SQL."""
        prefix = self.table_prefix
        if not prefix or not all(char.isalnum() or char == "_" for char in prefix):
            raise ValueError(f"Invalid table prefix {prefix!r}.")

    def store_file(self, settings: InstallationSettings) -> Path:
        """Return the SQLite file used by the installation in *settings*."""
        return settings.install_path / self.store_path

    def synchronize(
        self,
        settings: InstallationSettings,
        *,
        scope: OperationScope | None = None,
    ) -> SyncResult:
        """Bring the stored ``home``/``siteurl`` in line with *settings*.

        A missing or not yet initialised store is not an error: WordPress
        creates it during its own first-run installer.
        """
        store = self.store_file(settings)
        target = settings.site_url

        if not store.exists():
            _step(scope, "sync.store", "skipped", f"no store at {store}")
            return SyncResult(status=SYNC_MISSING_STORE, store=store, target_url=target)

        try:
            connection = self._connect(store)
        except StoreUnavailableError as exc:
            _step(scope, "sync.store", "skipped", str(exc))
            return SyncResult(
                status=SYNC_UNAVAILABLE, store=store, target_url=target, detail=str(exc)
            )

        with closing(connection):
            try:
                previous = self._read_home(connection)
            except StoreUnavailableError as exc:
                _step(scope, "sync.read", "skipped", str(exc))
                return SyncResult(
                    status=SYNC_UNAVAILABLE, store=store, target_url=target, detail=str(exc)
                )

            if previous == target:
                _step(scope, "sync.compare", "success", f"home already {target}")
                return SyncResult(
                    status=SYNC_UNCHANGED, store=store, target_url=target, previous_url=previous
                )

            try:
                with connection:
                    options_updated = self._update_options(connection, target)
                    content_updated = 0
                    if self.rewrite_content and previous:
                        content_updated = self._rewrite_content(connection, previous, target)
            except sqlite3.Error as exc:
                raise SyncError(f"Failed to update site URL in {store}: {exc}") from exc

        _step(scope, "sync.options", "success", f"{previous} -> {target}")
        if self.rewrite_content:
            _step(scope, "sync.content", "success", f"{content_updated} rows rewritten")
        else:
            _step(scope, "sync.content", "skipped", "content rewrite disabled")
        return SyncResult(
            status=SYNC_UPDATED,
            store=store,
            target_url=target,
            previous_url=previous,
            options_updated=options_updated,
            content_updated=content_updated,
        )

    # ------------------------------------------------------------------
    def _table(self, suffix: str) -> str:
        return f"{self.table_prefix}{suffix}"

    def _connect(self, store: Path) -> sqlite3.Connection:
        # mode=rw never creates a database file as a side effect.
        uri = f"{store.resolve().as_uri()}?mode=rw"
        try:
            return sqlite3.connect(uri, uri=True)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot open store {store}: {exc}") from exc

    def _read_home(self, connection: sqlite3.Connection) -> str:
        query = f"SELECT option_value FROM {self._table('options')} WHERE option_name = 'home'"
        try:
            row = connection.execute(query).fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot read home option: {exc}") from exc
        if row is None:
            raise StoreUnavailableError("The home option has not been created yet.")
        return "" if row[0] is None else str(row[0])

    def _update_options(self, connection: sqlite3.Connection, target: str) -> int:
        cursor = connection.execute(
            f"UPDATE {self._table('options')} SET option_value = ? "
            "WHERE option_name = 'home' OR option_name = 'siteurl'",
            (target,),
        )
        return cursor.rowcount

    def _rewrite_content(self, connection: sqlite3.Connection, old: str, new: str) -> int:
        # Plain substring replacement. When *old* is a prefix of another URL
        # (``http://localhost`` of ``http://localhost:8080``) that URL is
        # rewritten as well; serialized PHP lengths are not adjusted.
        total = 0
        for suffix, column in CONTENT_COLUMNS:
            cursor = connection.execute(
                f"UPDATE {self._table(suffix)} SET {column} = replace({column}, ?, ?) "
                f"WHERE instr({column}, ?) > 0",
                (old, new, old),
            )
            total += max(cursor.rowcount, 0)
        return total


def _step(scope: OperationScope | None, name: str, status: str, detail: str) -> None:
    if scope is not None:
        scope.add_step(name, status=status, detail=detail)


__all__ = [
    "CONTENT_COLUMNS",
    "EndpointSynchronizer",
    "StoreUnavailableError",
    "SyncError",
    "SyncResult",
    "SYNC_MISSING_STORE",
    "SYNC_UNAVAILABLE",
    "SYNC_UNCHANGED",
    "SYNC_UPDATED",
]

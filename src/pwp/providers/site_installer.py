"""Provision a WordPress tree backed by the SQLite Integration drop-in."""
from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from ..archive import ArchiveError, ExtractionResult, extract_archive
from ..config import InstallationSettings
from ..fetcher import DownloadError, Fetcher
from ..logging import OperationScope
from ..progress import PhaseProgress
from ..site_config import ConfigWriteError, SiteConfigGenerator

PHASE_DOWNLOAD = "download"
PHASE_EXTRACT = "extract"
PHASE_CONFIGURE = "configure"

CORE_ARCHIVE_NAME = ".pwp-wordpress.zip"
ADDON_ARCHIVE_NAME = "plugin.zip"


class ProvisionError(RuntimeError):
    """Raised when a provisioning phase fails; ``phase`` names the phase."""

    def __init__(self, phase: str, message: str) -> None:
        """Store the failing *phase* alongside the message."""
        super().__init__(f"{phase} failed: {message}")
        self.phase = phase


@dataclass(frozen=True, slots=True)
class InstallResult:
    """Metadata describing a provisioning pass."""

    path: Path
    skipped: bool
    installed_at: str | None = None
    addon_dir: Path | None = None
    dropin: Path | None = None
    files: int = 0


class SiteInstaller:
    """Download, extract and configure a WordPress installation exactly once."""

    def __init__(
        self,
        *,
        fetcher: Fetcher,
        config_generator: SiteConfigGenerator,
        wordpress_url: str,
        addon_url: str,
        dropin_name: str = "db.php",
        dropin_target: Path = Path("wp-content/db.php"),
        progress: PhaseProgress | None = None,
    ) -> None:
        """Initialise the installer with its collaborators and download sources."""
        self.fetcher = fetcher
        self.config_generator = config_generator
        self.wordpress_url = wordpress_url
        self.addon_url = addon_url
        self.dropin_name = dropin_name
        self.dropin_target = dropin_target
        self.progress = progress

    def is_provisioned(self, settings: InstallationSettings) -> bool:
        """Return True when the installation directory already exists."""
        return settings.install_path.exists()

    def install(
        self,
        settings: InstallationSettings,
        *,
        scope: OperationScope | None = None,
    ) -> InstallResult:
        """Provision ``settings.install_path`` unless it already exists.

        Everything is assembled in a staging directory next to the target and
        renamed into place once every phase succeeded, so the target either
        does not exist or is complete.
        """
        target_dir = settings.install_path
        if self.is_provisioned(settings):
            _step(scope, "provision", "skipped", f"{target_dir} already exists")
            return InstallResult(path=target_dir, skipped=True)

        parent = target_dir.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
            staging_dir = Path(
                tempfile.mkdtemp(prefix=f".pwp-{target_dir.name}-", dir=str(parent))
            )
            staging_dir.chmod(0o755)
        except OSError as exc:
            raise ProvisionError(PHASE_EXTRACT, f"cannot stage {target_dir}: {exc}") from exc

        staging_to_cleanup: Path | None = staging_dir
        try:
            files, addon_dir, dropin = self._populate(staging_dir, scope)
            try:
                staging_dir.rename(target_dir)
            except OSError as exc:
                raise ProvisionError(
                    PHASE_EXTRACT, f"cannot move staged tree to {target_dir}: {exc}"
                ) from exc
            staging_to_cleanup = None
        finally:
            if staging_to_cleanup and staging_to_cleanup.exists():
                shutil.rmtree(staging_to_cleanup, ignore_errors=True)

        _step(scope, "provision.commit", "success", str(target_dir))
        installed_at = datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")
        return InstallResult(
            path=target_dir,
            skipped=False,
            installed_at=installed_at,
            addon_dir=target_dir / addon_dir.relative_to(staging_dir),
            dropin=target_dir / dropin.relative_to(staging_dir),
            files=files,
        )

    # ------------------------------------------------------------------
    def _populate(
        self,
        root: Path,
        scope: OperationScope | None,
    ) -> tuple[int, Path, Path]:
        core_archive = root / CORE_ARCHIVE_NAME
        with self._phase("Downloading WordPress core."):
            self._download(self.wordpress_url, core_archive, scope, "download.wordpress")
        with self._phase("Extracting WordPress to destination."):
            core = self._extract(core_archive, root, scope, "extract.wordpress", strip_root=True)

        plugins_dir = root / "wp-content" / "plugins"
        addon_archive = plugins_dir / ADDON_ARCHIVE_NAME
        with self._phase("Downloading SQLite Integration plugin."):
            self._download(self.addon_url, addon_archive, scope, "download.addon")
        with self._phase("Extracting SQLite Integration plugin."):
            addon = self._extract(
                addon_archive, plugins_dir, scope, "extract.addon", strip_root=False
            )
            if not addon.root_prefix:
                raise ProvisionError(PHASE_EXTRACT, "add-on archive has no top-level folder")
            addon_dir = plugins_dir / addon.root_prefix.rstrip("/")
            dropin = self._relocate_dropin(addon_dir, root, scope)

        with self._phase("Writing wp-config.php and router.php."):
            try:
                config_path = self.config_generator.generate_config(root)
                _step(scope, "configure.wp-config", "success", config_path.name)
                router_path = self.config_generator.generate_router(root)
                _step(scope, "configure.router", "success", router_path.name)
            except ConfigWriteError as exc:
                _step(scope, "configure", "error", str(exc))
                raise ProvisionError(PHASE_CONFIGURE, str(exc)) from exc

        return len(core.files) + len(addon.files), addon_dir, dropin

    def _download(
        self,
        url: str,
        destination: Path,
        scope: OperationScope | None,
        step: str,
    ) -> None:
        try:
            self.fetcher.download(url, destination)
        except DownloadError as exc:
            _step(scope, step, "error", str(exc))
            raise ProvisionError(PHASE_DOWNLOAD, str(exc)) from exc
        _step(scope, step, "success", url)

    def _extract(
        self,
        archive: Path,
        destination: Path,
        scope: OperationScope | None,
        step: str,
        *,
        strip_root: bool,
    ) -> ExtractionResult:
        try:
            result = extract_archive(archive, destination, strip_root=strip_root)
        except ArchiveError as exc:
            _step(scope, step, "error", str(exc))
            raise ProvisionError(PHASE_EXTRACT, str(exc)) from exc
        _step(scope, step, "success", f"{len(result.files)} files")
        return result

    def _relocate_dropin(self, addon_dir: Path, root: Path, scope: OperationScope | None) -> Path:
        source = addon_dir / self.dropin_name
        target = root / self.dropin_target
        if not source.is_file():
            raise ProvisionError(PHASE_EXTRACT, f"add-on does not ship {self.dropin_name}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, target)
        except OSError as exc:
            raise ProvisionError(PHASE_EXTRACT, f"cannot move {source} to {target}: {exc}") from exc
        _step(scope, "extract.dropin", "success", str(self.dropin_target))
        return target

    @contextmanager
    def _phase(self, message: str) -> Iterator[None]:
        context = self.progress.phase(message) if self.progress else nullcontext()
        with context:
            yield


def _step(scope: OperationScope | None, name: str, status: str, detail: str) -> None:
    if scope is not None:
        scope.add_step(name, status=status, detail=detail)


__all__ = [
    "InstallResult",
    "PHASE_CONFIGURE",
    "PHASE_DOWNLOAD",
    "PHASE_EXTRACT",
    "ProvisionError",
    "SiteInstaller",
]

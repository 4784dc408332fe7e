"""Generate the environment-specific WordPress artifacts.

Two files are written into a fresh installation: ``wp-config.php`` (inert
database settings, authentication keys and salts, table prefix) and
``router.php``, the request router PHP's built-in server loads for every
request.
"""
from __future__ import annotations

import random
import string
from dataclasses import dataclass, field
from pathlib import Path

from jinja2 import TemplateError

from .templates import TemplateEngine

SECRET_ALPHABET = string.ascii_letters
SECRET_LENGTH = 64
SECRET_NAMES = (
    "AUTH_KEY",
    "SECURE_AUTH_KEY",
    "LOGGED_IN_KEY",
    "NONCE_KEY",
    "AUTH_SALT",
    "SECURE_AUTH_SALT",
    "LOGGED_IN_SALT",
    "NONCE_SALT",
)

CONFIG_TEMPLATE = "wordpress/wp-config.php.j2"
ROUTER_TEMPLATE = "wordpress/router.php.j2"
CONFIG_FILENAME = "wp-config.php"
ROUTER_FILENAME = "router.php"


class ConfigWriteError(RuntimeError):
    """Raised when a generated artifact cannot be rendered or written."""


def generate_secret(rng: random.Random, length: int = SECRET_LENGTH) -> str:
    """Return *length* characters drawn from ``[a-zA-Z]``."""
    return "".join(rng.choice(SECRET_ALPHABET) for _ in range(length))


@dataclass(slots=True)
class SiteConfigGenerator:
    """Render ``wp-config.php`` and ``router.php`` into an installation root."""

    templates: TemplateEngine
    table_prefix: str = "wp_"
    rng: random.Random = field(default_factory=random.SystemRandom)

    def generate_secrets(self) -> dict[str, str]:
        """Return a fresh secret for every authentication slot."""
        return {name: generate_secret(self.rng) for name in SECRET_NAMES}

    def generate_config(self, root: Path) -> Path:
        """Write ``wp-config.php`` under *root* with newly generated secrets."""
        context = {
            "secrets": self.generate_secrets(),
            "pad": max(len(name) for name in SECRET_NAMES),
            "table_prefix": self.table_prefix,
        }
        return self._render(CONFIG_TEMPLATE, root / CONFIG_FILENAME, context, mode=0o640)

    def generate_router(self, root: Path) -> Path:
        """Write the static request router under *root*."""
        return self._render(ROUTER_TEMPLATE, root / ROUTER_FILENAME, {}, mode=0o644)

    def _render(
        self,
        template_name: str,
        destination: Path,
        context: dict[str, object],
        *,
        mode: int,
    ) -> Path:
        try:
            self.templates.render_to_path(template_name, destination, context, mode=mode)
        except TemplateError as exc:
            raise ConfigWriteError(f"Cannot render {template_name}: {exc}") from exc
        except OSError as exc:
            raise ConfigWriteError(f"Cannot write {destination}: {exc}") from exc
        return destination


__all__ = [
    "CONFIG_FILENAME",
    "ConfigWriteError",
    "ROUTER_FILENAME",
    "SECRET_ALPHABET",
    "SECRET_LENGTH",
    "SECRET_NAMES",
    "SiteConfigGenerator",
    "generate_secret",
]

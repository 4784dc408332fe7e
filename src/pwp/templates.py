"""Template rendering for generated site artifacts.

Built-in templates ship inside the package (``pwp/resources/templates``). A user
templates directory can shadow any of them by providing a file with the same
relative name.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from importlib import resources
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined


@dataclass(slots=True)
class TemplateEngine:
    """Render Jinja2 templates with strict variable handling."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Build an engine that prefers templates found in *override_dir*."""
        loaders: list[FileSystemLoader] = []
        if override_dir is not None and override_dir.expanduser().is_dir():
            loaders.append(FileSystemLoader(str(override_dir.expanduser())))
        builtin = resources.files("pwp") / "resources" / "templates"
        loaders.append(FileSystemLoader(str(builtin)))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        template = self.environment.get_template(template_name)
        return template.render(**dict(context))

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render into *destination*, returning ``True`` when the file changed.

        The content is written to a temporary sibling first and moved into
        place so readers never observe a partially written file.
        """
        rendered = self.render_to_string(template_name, context)
        if destination.exists():
            current = destination.read_text(encoding="utf-8")
            if current == rendered:
                if (destination.stat().st_mode & 0o777) != mode:
                    destination.chmod(mode)
                return False

        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_path = destination.with_name(f".{destination.name}.tmp")
        temp_path.write_text(rendered, encoding="utf-8")
        temp_path.chmod(mode)
        os.replace(temp_path, destination)
        return True


__all__ = ["TemplateEngine"]

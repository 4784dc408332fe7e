"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest
from jinja2 import UndefinedError

from pwp.templates import TemplateEngine

CONFIG_CONTEXT = {
    "secrets": {"AUTH_KEY": "abc", "NONCE_SALT": "xyz"},
    "pad": 10,
    "table_prefix": "wp_",
}


def test_render_to_string_uses_builtin_templates() -> None:
    """Built-in templates render with strict variables."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("wordpress/wp-config.php.j2", CONFIG_CONTEXT)

    assert output.startswith("<?php")
    assert "define( 'AUTH_KEY',   'abc' );" in output
    assert "$table_prefix = 'wp_';" in output


def test_missing_variables_raise() -> None:
    """StrictUndefined surfaces missing context instead of rendering blanks."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(UndefinedError):
        engine.render_to_string("wordpress/wp-config.php.j2", {"secrets": {}, "pad": 0})


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "wp-config.php"

    changed = engine.render_to_path(
        "wordpress/wp-config.php.j2", destination, CONFIG_CONTEXT, mode=0o640
    )

    assert changed is True
    assert destination.exists()
    assert oct(destination.stat().st_mode & 0o777) == "0o640"
    assert not (tmp_path / ".wp-config.php.tmp").exists()

    # Second render with same content should be a no-op.
    changed_again = engine.render_to_path(
        "wordpress/wp-config.php.j2", destination, CONFIG_CONTEXT, mode=0o640
    )
    assert changed_again is False


def test_override_path_takes_precedence(tmp_path: Path) -> None:
    """Override templates shadow the built-in ones."""
    override_dir = tmp_path / "templates"
    override_template = override_dir / "wordpress" / "router.php.j2"
    override_template.parent.mkdir(parents=True)
    override_template.write_text("<?php // custom router", encoding="utf-8")

    engine = TemplateEngine.with_overrides(override_dir)

    rendered = engine.render_to_string("wordpress/router.php.j2", {})

    assert rendered == "<?php // custom router"


def test_missing_override_directory_falls_back(tmp_path: Path) -> None:
    """A configured but absent override directory is ignored."""
    engine = TemplateEngine.with_overrides(tmp_path / "absent")

    rendered = engine.render_to_string("wordpress/router.php.j2", {})

    assert "include_once 'index.php';" in rendered

"""Terminal progress indication for long-running bootstrap phases."""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from rich.console import Console


@dataclass(slots=True)
class PhaseProgress:
    """Show a spinner for the lifetime of a single phase.

    The spinner runs on Rich's refresh thread and is stopped when the phase
    block exits, whether it completed or raised.
    """

    console: Console
    enabled: bool = True
    spinner: str = "line"

    @contextmanager
    def phase(self, message: str) -> Iterator[None]:
        """Decorate the enclosed block with *message* and a spinner."""
        if not self.enabled or not self.console.is_terminal:
            self.console.print(message)
            yield
            return
        with self.console.status(message, spinner=self.spinner):
            yield
        self.console.print(message)


__all__ = ["PhaseProgress"]

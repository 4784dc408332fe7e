"""Structured operation logging for pwp.

Every CLI run is recorded as a single JSON line in
``<logs_dir>/operations.jsonl``. A record captures the command, its
arguments, the steps taken while it ran and the final result. Components do
not own a logger of their own: the CLI opens an :class:`OperationScope` and
passes it down, so log state never outlives the run that produced it.

Logging is best effort. When the log directory cannot be created or the file
cannot be written the logger disables itself instead of failing the command.
"""
from __future__ import annotations

import json
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

OPERATIONS_LOG = "operations.jsonl"


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    """Return a JSON-safe copy of *value*."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


def _sanitize_mapping(value: Mapping[str, object] | None) -> dict[str, object]:
    if not value:
        return {}
    return {str(key): _sanitize(item) for key, item in value.items()}


def _as_list(values: Sequence[str] | None) -> list[str]:
    if not values:
        return []
    return [str(value) for value in values]


@dataclass(slots=True)
class OperationScope:
    """Collects steps and the outcome of a single logged operation."""

    command: str
    op_id: str
    args: dict[str, object] = field(default_factory=dict)
    target: dict[str, object] = field(default_factory=dict)
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None

    def add_step(self, name: str, *, status: str = "info", detail: str | None = None) -> None:
        """Append a named step to the operation record."""
        step: dict[str, object] = {"name": name, "status": status, "at": _timestamp()}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a successful outcome."""
        self._record("success", message, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a completed-with-warnings outcome."""
        self._record(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        rc: int | None = None,
        errors: Sequence[str] | None = None,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a failed outcome; *errors* defaults to ``[message]``."""
        self._record(
            "error",
            message,
            rc=rc,
            warnings=warnings,
            errors=errors if errors else [message],
            context=context,
        )

    def _record(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        rc: int | None = None,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": _as_list(warnings),
            "errors": _as_list(errors),
        }
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitize(context)
        self.result = result


class StructuredLogger:
    """Append operation records to ``operations.jsonl`` under *logs_dir*."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the log directory, disabling the logger when unavailable."""
        self._logs_dir = logs_dir.expanduser()
        self._operations_log_path = self._logs_dir / OPERATIONS_LOG
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Open a scope for *command* and persist it when the block exits.

        Exceptions escaping the block are recorded as errors (unless the block
        already recorded a result) and then re-raised.
        """
        scope = OperationScope(
            command=command,
            op_id=uuid.uuid4().hex[:12],
            args=_sanitize_mapping(args),
            target=_sanitize_mapping(target),
        )
        started_at = _timestamp()
        start = time.monotonic()
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__, errors=[repr(exc)])
            raise
        finally:
            duration_ms = int((time.monotonic() - start) * 1000)
            if scope.result is None:
                scope.success("Operation completed.")
            self._write(
                {
                    "op_id": scope.op_id,
                    "command": scope.command,
                    "args": scope.args,
                    "target": scope.target,
                    "started_at": started_at,
                    "finished_at": _timestamp(),
                    "duration_ms": duration_ms,
                    "steps": scope.steps,
                    "result": scope.result,
                }
            )

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        line = json.dumps(record, sort_keys=False) + "\n"
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError:
            self._enabled = False


__all__ = ["OPERATIONS_LOG", "OperationScope", "StructuredLogger"]

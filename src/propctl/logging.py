"""Structured operation logging for the propctl CLI.

Every CLI command runs inside an :class:`OperationScope`. When the scope
closes, one JSON record is appended to ``operations.jsonl`` and a one-line
summary is written to ``propctl.log``. Logging never fails a command: if the
directory cannot be created or a write fails, the logger disables itself.
"""
from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType
from typing import Any

from . import __version__

OPERATIONS_LOG = "operations.jsonl"
HUMAN_LOG = "propctl.log"


def _now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def _sanitise(value: object) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitise(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitise(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final result for one CLI operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Bind the scope to *logger* for *command*."""
        self._logger = logger
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, Any]] = []
        self.result: dict[str, Any] | None = None
        self._id = uuid.uuid4().hex
        self._started_at = _now()
        self._started = time.monotonic()

    def __enter__(self) -> OperationScope:
        """Return the scope itself."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        """Record a result (if none was set) and flush the operation."""
        if self.result is None:
            if exc is None:
                self._set_result("success", "Completed.", rc=0)
            else:
                message = str(exc) or exc.__class__.__name__
                self._set_result("error", message, errors=[message], rc=1)
        self._logger._write(self)
        return False

    # ------------------------------------------------------------------
    def add_step(self, name: str, *, status: str = "success", detail: object | None = None) -> None:
        """Append a named step to the operation record."""
        self.steps.append(
            {
                "name": name,
                "status": status,
                "detail": _sanitise(detail),
                "at": _now(),
            }
        )

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a successful result."""
        self._set_result(
            "success", message, changed=changed, warnings=warnings, context=context, rc=0
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
        rc: int = 0,
    ) -> None:
        """Record a result that completed with warnings."""
        self._set_result(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            context=context,
            rc=rc,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 2,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a failed result."""
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors else [message],
            context=context,
            rc=rc,
        )

    # ------------------------------------------------------------------
    def _set_result(
        self,
        status: str,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
        rc: int = 0,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
            "changed": changed,
            "context": _sanitise(dict(context or {})),
            "rc": rc,
        }

    def to_record(self) -> dict[str, Any]:
        """Return the JSON record written for this operation."""
        return {
            "id": self._id,
            "started_at": self._started_at,
            "finished_at": _now(),
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "command": self.command,
            "args": _sanitise(self.args),
            "target": _sanitise(self.target),
            "context": {"propctl_version": __version__},
            "steps": self.steps,
            "result": self.result,
        }


class StructuredLogger:
    """Write operation records to ``operations.jsonl`` and ``propctl.log``."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the log directory, disabling the logger when it is unusable."""
        self.logs_dir = Path(logs_dir).expanduser()
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG
        self._human_log_path = self.logs_dir / HUMAN_LOG
        self._lock = threading.Lock()
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False
        self._human = logging.getLogger("propctl.operations")
        self._human.propagate = False
        self._human.setLevel(logging.INFO)

    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> OperationScope:
        """Return a scope recording one operation named *command*."""
        return OperationScope(self, command, args=args, target=target)

    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        record = scope.to_record()
        result = record["result"] or {}
        line = json.dumps(record, sort_keys=False)
        with self._lock:
            try:
                with self._operations_log_path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
                handler = self._human_handler()
                self._human.info(
                    "%s status=%s rc=%s message=%s",
                    scope.command,
                    result.get("status"),
                    result.get("rc"),
                    result.get("message"),
                )
                handler.flush()
            except OSError:
                self._enabled = False

    def _human_handler(self) -> logging.Handler:
        target = str(self._human_log_path)
        for handler in self._human.handlers:
            if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
                return handler
        for handler in list(self._human.handlers):
            self._human.removeHandler(handler)
            handler.close()
        handler = logging.FileHandler(target, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        self._human.addHandler(handler)
        return handler


__all__ = ["OperationScope", "StructuredLogger"]

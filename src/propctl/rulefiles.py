"""Read and write rule documents on the local filesystem.

Documents are JSON by default; ``.yml``/``.yaml`` files are read and written
with PyYAML. The path ``-`` means standard output when writing.
"""
from __future__ import annotations

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, TextIO

import yaml

STDOUT = "-"
_YAML_SUFFIXES = {".yml", ".yaml"}


class RuleFileError(RuntimeError):
    """Raised when a rule document cannot be read or written."""


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in _YAML_SUFFIXES


def read_document(path: str | Path) -> Any:
    """Load a JSON (or YAML) document from *path*."""
    target = Path(path).expanduser()
    try:
        text = target.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuleFileError(f"Unable to read {target}: {exc}") from exc
    try:
        if _is_yaml(target):
            return yaml.safe_load(text)
        return json.loads(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise RuleFileError(f"Failed to parse {target}: {exc}") from exc


def dumps(payload: object, *, fmt: str = "json") -> str:
    """Serialise *payload* the way rule documents are written."""
    if fmt == "yaml":
        return yaml.safe_dump(payload, sort_keys=False)
    return json.dumps(payload, indent=2) + "\n"


def write_document(path: str | Path, payload: object, *, stream: TextIO | None = None) -> Path | None:
    """Atomically write *payload* to *path*, or to *stream*/stdout for ``-``.

    Returns the written path, or ``None`` when the document went to a stream.
    """
    if str(path) == STDOUT:
        (stream or sys.stdout).write(dumps(payload))
        return None

    target = Path(path).expanduser()
    text = dumps(payload, fmt="yaml" if _is_yaml(target) else "json")
    directory = target.parent
    try:
        directory.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(directory), prefix=f".{target.name}.")
    except OSError as exc:
        raise RuleFileError(f"Unable to write {target}: {exc}") from exc
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_path, target)
    except OSError as exc:
        raise RuleFileError(f"Unable to write {target}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)
    return target


__all__ = ["RuleFileError", "STDOUT", "dumps", "read_document", "write_document"]

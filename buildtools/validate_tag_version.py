#!/usr/bin/env python3
"""Check that a release tag agrees with the package version.

CI runs this before publishing: ``v<version>`` tags are releases,
``v<version>-rc<n>`` tags are release candidates, and both must carry the
``__version__`` declared in ``src/propctl/__init__.py``.
"""
from __future__ import annotations

import argparse
import ast
import pathlib
import sys

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
INIT_PATH = PROJECT_ROOT / "src" / "propctl" / "__init__.py"


class TagValidationError(RuntimeError):
    """Raised when a tag does not follow the release naming scheme."""


def load_package_version(init_path: pathlib.Path = INIT_PATH) -> str:
    """Read ``__version__`` from *init_path* without importing the package."""
    module = ast.parse(init_path.read_text(encoding="utf-8"), filename=str(init_path))
    for node in module.body:
        if not isinstance(node, ast.Assign):
            continue
        if any(getattr(target, "id", None) == "__version__" for target in node.targets):
            if isinstance(node.value, ast.Constant) and isinstance(node.value.value, str):
                return node.value.value
    raise TagValidationError(f"Unable to determine __version__ from {init_path.name}")


def version_from_tag(tag: str, kind: str) -> str:
    """Return the package version a tag of *kind* refers to."""
    if not tag.startswith("v"):
        raise TagValidationError(f"Tags must start with 'v'; received '{tag}'.")
    body = tag[1:]
    if kind == "release":
        if "-" in body:
            raise TagValidationError(f"Release tags must be v<version>; received '{tag}'.")
        return body
    if kind == "rc":
        version, sep, suffix = body.partition("-rc")
        if not sep or not suffix.isdigit():
            raise TagValidationError(f"Candidate tags must be v<version>-rc<n>; received '{tag}'.")
        return version
    raise TagValidationError(f"Unknown tag kind '{kind}'.")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Return parsed CLI arguments."""
    parser = argparse.ArgumentParser(description="Validate a tag against the package version.")
    parser.add_argument("--kind", required=True, choices=["release", "rc"], help="Tag category.")
    parser.add_argument("--tag", required=True, help="Git tag name to validate.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Return 0 when the tag matches the package version, 1 otherwise."""
    args = parse_args(argv)
    try:
        expected = version_from_tag(args.tag, args.kind)
        actual = load_package_version()
    except TagValidationError as exc:
        sys.stderr.write(f"{exc}\n")
        return 1

    if actual != expected:
        sys.stderr.write(f"Tag version '{expected}' does not match package version '{actual}'.\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

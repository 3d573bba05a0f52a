"""Sphinx configuration for the propctl API reference."""
from __future__ import annotations

import importlib
import pathlib
import sys
from datetime import UTC, datetime

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[2]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

release = importlib.import_module("propctl").__version__
version = release

project = "propctl"
author = "propctl contributors"
copyright = f"{datetime.now(UTC):%Y}, {author}"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
]

autodoc_default_options = {
    "members": True,
    "show-inheritance": True,
}
autodoc_mock_imports = ["akamai", "requests"]

exclude_patterns: list[str] = ["_build"]

html_theme = "sphinx_rtd_theme"
html_title = f"{project} {release}"

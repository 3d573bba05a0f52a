"""Tests for the release tag validation script."""
from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from types import ModuleType

import pytest

from propctl import __version__

SCRIPT = Path(__file__).resolve().parent.parent / "buildtools" / "validate_tag_version.py"


@pytest.fixture(scope="module")
def tool() -> ModuleType:
    spec = importlib.util.spec_from_file_location("validate_tag_version", SCRIPT)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


def test_version_from_tag_accepts_release_and_candidate(tool: ModuleType) -> None:
    """Release and candidate tags yield the bare version."""
    assert tool.version_from_tag("v1.2.3", "release") == "1.2.3"
    assert tool.version_from_tag("v1.2.3-rc4", "rc") == "1.2.3"


@pytest.mark.parametrize(
    ("tag", "kind", "message"),
    [
        ("1.2.3", "release", "must start with 'v'"),
        ("v1.2.3-rc1", "release", "Release tags must be"),
        ("v1.2.3", "rc", "Candidate tags must be"),
        ("v1.2.3-rcx", "rc", "Candidate tags must be"),
        ("v1.2.3", "beta", "Unknown tag kind"),
    ],
)
def test_version_from_tag_rejects_malformed_tags(
    tool: ModuleType,
    tag: str,
    kind: str,
    message: str,
) -> None:
    """Malformed tags raise ``TagValidationError``."""
    with pytest.raises(tool.TagValidationError, match=message):
        tool.version_from_tag(tag, kind)


def test_load_package_version_reads_assignment(tool: ModuleType, tmp_path: Path) -> None:
    """``__version__`` is read statically from the init module."""
    init = tmp_path / "__init__.py"
    init.write_text('"""Doc."""\nOTHER = 1\n__version__ = "9.9.9"\n', encoding="utf-8")

    assert tool.load_package_version(init) == "9.9.9"
    assert tool.load_package_version() == __version__

    init.write_text("VERSION = '1'\n", encoding="utf-8")
    with pytest.raises(tool.TagValidationError, match="Unable to determine"):
        tool.load_package_version(init)


def test_main_compares_tag_with_package(
    tool: ModuleType,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """``main`` returns 0 on a match and 1 with a message otherwise."""
    assert tool.main(["--kind", "release", "--tag", f"v{__version__}"]) == 0
    assert tool.main(["--kind", "rc", "--tag", f"v{__version__}-rc2"]) == 0

    assert tool.main(["--kind", "release", "--tag", "v0.0.0"]) == 1
    assert "does not match package version" in capsys.readouterr().err

    assert tool.main(["--kind", "rc", "--tag", "v0.0.0"]) == 1
    assert "Candidate tags must be" in capsys.readouterr().err

"""Packaging checks for pyproject.toml.

Covers:
- Every third-party module imported by the installed packages is declared
  as a runtime dependency, so `pip install .` yields an importable service
"""

from __future__ import annotations

import ast
import re
import sys
from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

ROOT = Path(__file__).resolve().parent.parent
LOCAL_MODULES = {"api", "auth", "core", "main"}

# Import name -> distribution name, where the two differ.
DISTRIBUTIONS = {
    "jose": "python-jose",
    "pydantic_settings": "pydantic-settings",
}


def _source_files() -> list[Path]:
    files = [ROOT / "main.py"]
    for package in ("api", "auth", "core"):
        files.extend(sorted((ROOT / package).rglob("*.py")))
    return files


def _imported_top_levels(path: Path) -> set[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    names: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.update(alias.name.split(".")[0] for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
            names.add(node.module.split(".")[0])
    return names


def _declared_distributions() -> set[str]:
    with open(ROOT / "pyproject.toml", "rb") as fh:
        project = tomllib.load(fh)["project"]
    declared = set()
    for requirement in project["dependencies"]:
        name = re.split(r"[\[<>=!~; ]", requirement, maxsplit=1)[0]
        declared.add(name.lower().replace("_", "-"))
    return declared


def test_third_party_imports_are_declared() -> None:
    declared = _declared_distributions()
    missing = {}
    for path in _source_files():
        for module in _imported_top_levels(path):
            if module in LOCAL_MODULES or module in sys.stdlib_module_names or module == "__future__":
                continue
            distribution = DISTRIBUTIONS.get(module, module).lower().replace("_", "-")
            if distribution not in declared:
                missing.setdefault(distribution, []).append(str(path.relative_to(ROOT)))
    assert not missing, f"imported but not declared in pyproject.toml: {missing}"


def test_middleware_framework_imports_are_declared() -> None:
    """auth/middleware.py binds directly to starlette's middleware base class."""
    assert "starlette" in _imported_top_levels(ROOT / "auth" / "middleware.py")
    assert "starlette" in _declared_distributions()

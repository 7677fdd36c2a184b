"""Runtime imports of expense_rules must be declared in pyproject.toml."""

from __future__ import annotations

import ast
import re
import sys
import tomllib
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
DISTRIBUTION_NAMES = {"yaml": "pyyaml"}


def _imported_top_level_modules() -> set[str]:
    modules: set[str] = set()
    for path in (ROOT / "src" / "expense_rules").rglob("*.py"):
        for node in ast.walk(ast.parse(path.read_text(encoding="utf-8"))):
            if isinstance(node, ast.Import):
                modules.update(alias.name.split(".")[0] for alias in node.names)
            elif isinstance(node, ast.ImportFrom) and node.module and not node.level:
                modules.add(node.module.split(".")[0])
    return modules


def _runtime_requirements() -> set[str]:
    project = tomllib.loads((ROOT / "pyproject.toml").read_text(encoding="utf-8"))["project"]
    return {
        re.split(r"[<>=!~\[;\s]", requirement, maxsplit=1)[0].lower()
        for requirement in project["dependencies"]
    }


def test_runtime_imports_are_declared() -> None:
    third_party = {
        DISTRIBUTION_NAMES.get(module, module)
        for module in _imported_top_level_modules()
        if module not in sys.stdlib_module_names and module != "expense_rules"
    }

    assert third_party == _runtime_requirements()

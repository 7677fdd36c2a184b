"""Tests for package root public API imports."""

from __future__ import annotations

import tomllib
from pathlib import Path

import expense_rules as er
from expense_rules import (
    TransactionRuleMatcher,
    __version__,
    adjusted_mie,
    classify_category,
    extract_line_items,
    resolve_effective_policy,
    shape_policy_result,
    should_suggest_split,
)


def test_public_api_exports() -> None:
    """Core API symbols should be importable from the package root."""
    required_exports = {
        "__version__",
        "adjusted_mie",
        "calculate_trip_per_diem",
        "TransactionRuleMatcher",
        "extract_line_items",
        "classify_category",
        "should_suggest_split",
        "resolve_effective_policy",
        "shape_policy_result",
    }

    assert required_exports.issubset(set(er.__all__))
    assert callable(adjusted_mie)
    assert callable(extract_line_items)
    assert callable(classify_category)
    assert callable(should_suggest_split)
    assert callable(resolve_effective_policy)
    assert callable(shape_policy_result)
    assert TransactionRuleMatcher is not None


def test_all_entries_resolve() -> None:
    missing = [name for name in er.__all__ if not hasattr(er, name)]

    assert missing == []


def test_version_matches_pyproject() -> None:
    """Package __version__ should align with pyproject.toml."""
    pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    pyproject_data = tomllib.loads(pyproject_path.read_text(encoding="utf-8"))
    assert __version__ == pyproject_data["project"]["version"]

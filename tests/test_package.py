"""Tests for the package surface."""
from __future__ import annotations

import importlib
import pkgutil

import pytest

import solpay_mint
from solpay_mint.validation import ValidationResult


class TestPackage:
    """Import-time checks."""

    def test_version(self):
        """Should expose the distribution version."""
        assert solpay_mint.__version__ == "0.1.0"

    def test_exports_resolve(self):
        """Should define every name listed in __all__."""
        missing = [name for name in solpay_mint.__all__ if not hasattr(solpay_mint, name)]
        assert missing == []

    @pytest.mark.parametrize(
        "module", [info.name for info in pkgutil.iter_modules(solpay_mint.__path__)]
    )
    def test_submodules_import(self, module):
        """Should import every submodule on its own."""
        assert importlib.import_module(f"solpay_mint.{module}")

    def test_validation_result_details_are_independent(self):
        """Should give each result its own details mapping."""
        first = ValidationResult(valid=True, signature="a")
        second = ValidationResult(valid=False, signature="b", field="amount", reason="short")

        first.details["slot"] = 1

        assert second.details == {}
        assert second.to_dict()["field"] == "amount"

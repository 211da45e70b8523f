"""
Unit tests for typed filter expressions.
"""

from __future__ import annotations

import pytest
from qdrant_client import models

from vecsync.storage.filters import (
    And,
    AnyOf,
    Equals,
    by_file_path,
    by_project,
    compile_filter,
)


class TestCompileFilter:
    """Tests for compiling expressions to Qdrant filters."""

    def test_none_compiles_to_none(self):
        """Test a missing filter means no filter."""
        assert compile_filter(None) is None

    def test_empty_and_compiles_to_none(self):
        """Test an empty conjunction means no filter."""
        assert compile_filter(And()) is None

    def test_equals(self):
        """Test Equals becomes a MatchValue condition."""
        compiled = compile_filter(Equals("project", "demo"))

        assert isinstance(compiled, models.Filter)
        assert len(compiled.must) == 1
        condition = compiled.must[0]
        assert condition.key == "project"
        assert condition.match == models.MatchValue(value="demo")

    def test_any_of(self):
        """Test AnyOf becomes a MatchAny condition."""
        compiled = compile_filter(AnyOf("file_type", ["document_pdf", "document_docx"]))

        condition = compiled.must[0]
        assert condition.key == "file_type"
        assert condition.match == models.MatchAny(any=["document_pdf", "document_docx"])

    def test_and_flattens_at_top_level(self):
        """Test a top-level And lists its members in must."""
        compiled = compile_filter(
            And(Equals("project", "demo"), Equals("file_type", "typescript"))
        )

        assert [c.key for c in compiled.must] == ["project", "file_type"]

    def test_nested_and(self):
        """Test a nested And compiles to a nested Filter."""
        compiled = compile_filter(
            And(Equals("project", "demo"), And(Equals("a", 1), Equals("b", 2)))
        )

        nested = compiled.must[1]
        assert isinstance(nested, models.Filter)
        assert [c.key for c in nested.must] == ["a", "b"]

    def test_unknown_expression_rejected(self):
        """Test arbitrary objects are not silently accepted."""
        with pytest.raises(TypeError):
            compile_filter(And({"project": "demo"}))  # type: ignore[arg-type]


class TestExpressions:
    """Tests for expression value semantics."""

    def test_any_of_values_frozen(self):
        """Test AnyOf copies its values into a tuple."""
        values = ["a", "b"]
        expr = AnyOf("field", values)
        values.append("c")

        assert expr.values == ("a", "b")

    def test_equality(self):
        """Test expressions compare by value."""
        assert And(Equals("x", 1)) == And(Equals("x", 1))
        assert by_file_path("/p/a.ts") == Equals("file_path", "/p/a.ts")
        assert by_project("demo") == Equals("project", "demo")

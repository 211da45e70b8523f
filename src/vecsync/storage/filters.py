"""
Typed payload filter expressions.

Callers build filters from Equals / AnyOf / And; the vector store compiles
them to Qdrant filter models at the boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from qdrant_client import models


@dataclass(frozen=True)
class Equals:
    """Payload field equals a single value."""

    field: str
    value: Any


@dataclass(frozen=True)
class AnyOf:
    """Payload field equals any of the given values."""

    field: str
    values: tuple[Any, ...]

    def __init__(self, field: str, values: Any) -> None:
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class And:
    """All sub-expressions must match."""

    exprs: tuple["FilterExpr", ...]

    def __init__(self, *exprs: "FilterExpr") -> None:
        object.__setattr__(self, "exprs", tuple(exprs))


FilterExpr = Union[Equals, AnyOf, And]


def _compile_condition(expr: FilterExpr) -> models.Condition:
    if isinstance(expr, Equals):
        return models.FieldCondition(
            key=expr.field,
            match=models.MatchValue(value=expr.value),
        )
    if isinstance(expr, AnyOf):
        return models.FieldCondition(
            key=expr.field,
            match=models.MatchAny(any=list(expr.values)),
        )
    if isinstance(expr, And):
        return models.Filter(must=[_compile_condition(e) for e in expr.exprs])
    raise TypeError(f"Unsupported filter expression: {expr!r}")


def compile_filter(expr: FilterExpr | None) -> models.Filter | None:
    """
    Compile a filter expression to a Qdrant filter.

    Args:
        expr: Expression to compile, or None for no filter.

    Returns:
        Qdrant Filter, or None when there is nothing to filter on.
    """
    if expr is None:
        return None

    if isinstance(expr, And):
        if not expr.exprs:
            return None
        return models.Filter(must=[_compile_condition(e) for e in expr.exprs])

    return models.Filter(must=[_compile_condition(expr)])


def by_file_path(file_path: str) -> Equals:
    """Filter selecting every chunk of one file."""
    return Equals("file_path", file_path)


def by_project(project: str) -> Equals:
    """Filter selecting every chunk of one project."""
    return Equals("project", project)

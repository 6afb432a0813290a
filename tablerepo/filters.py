"""Composable filter primitives rendered to the table service's OData dialect.

Filters are plain values: ``field("age").ge(18) & field("city").eq("Rosario")``
builds an ``And`` node that each store translates to its native form.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List
from uuid import UUID

from .exception import FilterException
from .types.record import KEY_FIELDS

EQUAL = "eq"
NOT_EQUAL = "ne"
GREATER_THAN = "gt"
GREATER_THAN_OR_EQUAL = "ge"
LESS_THAN = "lt"
LESS_THAN_OR_EQUAL = "le"
COMPARISONS = (EQUAL, NOT_EQUAL, GREATER_THAN, GREATER_THAN_OR_EQUAL, LESS_THAN, LESS_THAN_OR_EQUAL)

AND = "and"
OR = "or"

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1


class Filter(ABC):
    def __and__(self, other: "Filter") -> "Filter":
        return And(self, _coerce(other))

    def __or__(self, other: "Filter") -> "Filter":
        return Or(self, _coerce(other))

    def __invert__(self) -> "Filter":
        return Not(self)

    @abstractmethod
    def to_odata(self) -> str:
        ...

    def conjuncts(self) -> List["Filter"]:
        return [self]

    def __str__(self) -> str:
        return self.to_odata()


@dataclass(frozen=True)
class Comparison(Filter):
    field: str
    operator: str
    value: Any

    def __post_init__(self) -> None:
        if self.operator not in COMPARISONS:
            raise FilterException(f"unsupported comparison operator: {self.operator}")

    def to_odata(self) -> str:
        return generate_filter_condition(self.field, self.operator, self.value)


@dataclass(frozen=True)
class And(Filter):
    left: Filter
    right: Filter

    def to_odata(self) -> str:
        return combine_filters(self.left.to_odata(), AND, self.right.to_odata())

    def conjuncts(self) -> List[Filter]:
        return self.left.conjuncts() + self.right.conjuncts()


@dataclass(frozen=True)
class Or(Filter):
    left: Filter
    right: Filter

    def to_odata(self) -> str:
        return combine_filters(self.left.to_odata(), OR, self.right.to_odata())


@dataclass(frozen=True)
class Not(Filter):
    operand: Filter

    def to_odata(self) -> str:
        return f"not ({self.operand.to_odata()})"


@dataclass(frozen=True)
class RawFilter(Filter):
    """A native OData fragment supplied verbatim by the caller."""

    expression: str

    def to_odata(self) -> str:
        return self.expression


class Field:
    def __init__(self, name: str) -> None:
        if not name:
            raise FilterException("field name is required")
        self.name = KEY_FIELDS.get(name, name)

    def eq(self, value: Any) -> Comparison:
        return Comparison(self.name, EQUAL, value)

    def ne(self, value: Any) -> Comparison:
        return Comparison(self.name, NOT_EQUAL, value)

    def gt(self, value: Any) -> Comparison:
        return Comparison(self.name, GREATER_THAN, value)

    def ge(self, value: Any) -> Comparison:
        return Comparison(self.name, GREATER_THAN_OR_EQUAL, value)

    def lt(self, value: Any) -> Comparison:
        return Comparison(self.name, LESS_THAN, value)

    def le(self, value: Any) -> Comparison:
        return Comparison(self.name, LESS_THAN_OR_EQUAL, value)


def field(name: str) -> Field:
    return Field(name)


def generate_filter_condition(name: str, operator: str, value: Any) -> str:
    return f"{name} {operator} {format_value(value)}"


def combine_filters(left: str, operator: str, right: str) -> str:
    return f"({left}) {operator} ({right})"


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        if INT32_MIN <= value <= INT32_MAX:
            return str(value)
        return f"{value}L"
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return f"datetime'{value.isoformat()}Z'"
    if isinstance(value, UUID):
        return f"guid'{value}'"
    if isinstance(value, (bytes, bytearray)):
        return f"X'{bytes(value).hex()}'"
    raise FilterException(f"cannot render value of type {type(value).__name__} in a filter")


def _coerce(value: Any) -> Filter:
    if isinstance(value, Filter):
        return value
    if isinstance(value, str):
        return RawFilter(value)
    raise FilterException(f"cannot combine a filter with {type(value).__name__}")

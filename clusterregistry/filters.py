"""Filter conditions parsed from query strings."""

from __future__ import annotations

import re
from dataclasses import dataclass

ALLOWED_OPERANDS = ("<", "<=", "=", ">=", ">")

_QUERY_PATTERN = re.compile(
    r"([a-zA-Z0-9_.\-]+):(%s)(.*)" % "|".join(re.escape(op) for op in ALLOWED_OPERANDS)
)


class InvalidQueryError(ValueError):
    """Raised when a filter query does not follow ``<field>:<operand><value>``."""


@dataclass(frozen=True)
class FilterCondition:
    """A single ``field operand value`` condition."""

    field: str
    operand: str
    value: str


def parse_filter_condition(query: str) -> FilterCondition:
    """Parse a query of the form ``<field>:<operand><value>``."""
    match = _QUERY_PATTERN.search(query)
    if match is None:
        raise InvalidQueryError("invalid query")
    field, operand, value = match.groups()
    return FilterCondition(field, operand, value.strip())
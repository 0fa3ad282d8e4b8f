"""CLI filter parsing: converts CLI triples and JSON into predicates."""

from __future__ import annotations

import json
from typing import Any

from pricevault.errors import InvalidPredicateError
from pricevault.filters import (
    And,
    Comparison,
    FieldRef,
    Literal,
    Operand,
    Predicate,
    predicate_from_dict,
)

# Map CLI operator tokens to predicate operators
_OP_MAP: dict[str, str] = {
    "eq": "=",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "contains": "CONTAINS",
    "not_contains": "NOT CONTAINS",
}


def parse_cli_filters(triples: list[tuple[str, str, str]]) -> Predicate | None:
    """Parse CLI filter triples (FIELD, OP, VALUE_JSON) into a predicate.

    A VALUE_JSON of the form {"name": "other"} compares against another field.
    Multiple filters are AND-combined.
    """
    if not triples:
        return None

    exprs: list[Predicate] = []
    for field_name, op_token, value_json in triples:
        op = _OP_MAP.get(op_token)
        if op is None:
            raise ValueError(
                f"Unknown filter operator '{op_token}'. "
                f"Valid operators: {', '.join(sorted(_OP_MAP.keys()))}"
            )
        value: Any = json.loads(value_json)
        if isinstance(value, dict) and "name" in value:
            rhs: Operand = FieldRef(value["name"])
        else:
            rhs = Literal(value)
        exprs.append(Comparison(FieldRef(field_name), op, rhs))

    if len(exprs) == 1:
        return exprs[0]
    return And(tuple(exprs))


def parse_filter_args(filter_args: list[str] | None) -> Predicate | None:
    """Parse --filter values, each "FIELD OP VALUE_JSON"."""
    if not filter_args:
        return None
    triples: list[tuple[str, str, str]] = []
    for arg in filter_args:
        parts = arg.split(None, 2)
        if len(parts) != 3:
            raise ValueError(f"Invalid filter (expected 'FIELD OP VALUE_JSON'): {arg}")
        triples.append((parts[0], parts[1], parts[2]))
    return parse_cli_filters(triples)


def parse_where(where_json: str | None) -> Predicate | None:
    """Parse a --where predicate given in its JSON wire form."""
    if not where_json:
        return None
    try:
        raw = json.loads(where_json)
    except json.JSONDecodeError as e:
        raise InvalidPredicateError(f"--where is not valid JSON: {e}") from e
    return predicate_from_dict(raw)


def combine(*predicates: Predicate | None) -> Predicate | None:
    """AND together the given predicates, ignoring missing ones."""
    present = [p for p in predicates if p is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return And(tuple(present))

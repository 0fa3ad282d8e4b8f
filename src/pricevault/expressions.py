"""Compilation of predicates and updates into DynamoDB expression syntax.

DynamoDB expressions never carry attribute names or values inline: names are
aliased through ``ExpressionAttributeNames`` (``#...`` placeholders, which also
sidesteps reserved words) and values through ``ExpressionAttributeValues``
(``:...`` placeholders). Every compiler here returns the expression string
together with both placeholder maps.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from pricevault.filters import And, Comparison, FieldRef, Literal, Not, Operand, Or, Predicate

_UNSAFE_PLACEHOLDER_CHARS = re.compile(r"[^A-Za-z0-9_]")

# Operators that render infix; CONTAINS variants render as the contains() function.
_INFIX_OPS = {"<": "<", "<=": "<=", "=": "=", ">": ">", ">=": ">=", "!=": "<>"}


@dataclass(frozen=True)
class CompiledExpression:
    """A native expression string plus its placeholder maps."""

    expression: str
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)
    last_counter: int = 0


def _operand_placeholder(operand: Operand, counter: int) -> tuple[str, Any]:
    if isinstance(operand, FieldRef):
        safe = _UNSAFE_PLACEHOLDER_CHARS.sub("_", operand.name)
        return f"#field_{safe}_{counter}", operand.name
    if isinstance(operand, Literal):
        return f":val_{counter}", operand.value
    raise ValueError(f"Unknown operand type: {type(operand)}")


def _compile_comparison(expr: Comparison, counter: int) -> CompiledExpression:
    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    rendered: list[str] = []
    for operand in (expr.lhs, expr.rhs):
        counter += 1
        placeholder, resolved = _operand_placeholder(operand, counter)
        if placeholder.startswith("#"):
            names[placeholder] = resolved
        else:
            values[placeholder] = resolved
        rendered.append(placeholder)

    lhs, rhs = rendered
    if expr.op == "CONTAINS":
        text = f"contains({lhs}, {rhs})"
    elif expr.op == "NOT CONTAINS":
        text = f"(NOT contains({lhs}, {rhs}))"
    else:
        text = f"({lhs} {_INFIX_OPS[expr.op]} {rhs})"
    return CompiledExpression(text, names, values, counter)


def compile_predicate(predicate: Predicate, counter: int = 0) -> CompiledExpression:
    """Compile a predicate tree into a DynamoDB filter expression.

    ``counter`` seeds placeholder numbering; the returned ``last_counter`` is the
    seed to use for any further compilation that must not collide with this one.
    """
    if isinstance(predicate, Comparison):
        return _compile_comparison(predicate, counter)
    if isinstance(predicate, Not):
        inner = compile_predicate(predicate.predicate, counter)
        return CompiledExpression(
            f"(NOT {inner.expression})", inner.names, inner.values, inner.last_counter
        )
    if isinstance(predicate, (And, Or)):
        op = "AND" if isinstance(predicate, And) else "OR"
        acc = compile_predicate(predicate.predicates[0], counter)
        for child in predicate.predicates[1:]:
            rhs = compile_predicate(child, acc.last_counter)
            acc = CompiledExpression(
                f"({acc.expression} {op} {rhs.expression})",
                {**acc.names, **rhs.names},
                {**acc.values, **rhs.values},
                rhs.last_counter,
            )
        return acc
    raise ValueError(f"Unknown predicate type: {type(predicate)}")


def compile_update(fields: dict[str, Any], prefix: str = "upd") -> CompiledExpression:
    """Build a ``SET`` update expression, skipping fields whose value is None."""
    assignments: list[str] = []
    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    for i, (name, value) in enumerate(fields.items()):
        if value is None:
            continue
        assignments.append(f"#{prefix}_{i} = :{prefix}_{i}")
        names[f"#{prefix}_{i}"] = name
        values[f":{prefix}_{i}"] = value
    if not assignments:
        raise ValueError("Update requires at least one non-None field")
    return CompiledExpression(f"SET {', '.join(assignments)}", names, values, len(fields))


def compile_key_condition(key: dict[str, Any], prefix: str = "key") -> CompiledExpression:
    """Build an existence condition requiring every key attribute to be present."""
    clauses: list[str] = []
    names: dict[str, str] = {}
    for i, name in enumerate(key):
        clauses.append(f"attribute_exists(#{prefix}_{i})")
        names[f"#{prefix}_{i}"] = name
    return CompiledExpression(" AND ".join(clauses), names, {}, len(key))

"""Predicate types for the pricevault query DSL."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from pricevault.errors import InvalidPredicateError

COMPARISON_OPS = ("<", "<=", "=", ">", ">=", "!=", "CONTAINS", "NOT CONTAINS")
LOGICAL_OPS = ("AND", "OR")

_SCALAR_TYPES = (str, int, float, bool)


@dataclass(frozen=True)
class FieldRef:
    """Reference to a named attribute of the stored record."""

    name: str

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise InvalidPredicateError(f"Field name must be a non-empty string, got {self.name!r}")


@dataclass(frozen=True)
class Literal:
    """A literal scalar operand (string, number or boolean)."""

    value: str | int | float | bool

    def __post_init__(self) -> None:
        if not isinstance(self.value, _SCALAR_TYPES):
            raise InvalidPredicateError(
                f"Literal must be a string, number or boolean, got {type(self.value).__name__}"
            )


Operand = Union[Literal, FieldRef]


def _as_operand(value: Any) -> Operand:
    if isinstance(value, (Literal, FieldRef)):
        return value
    if isinstance(value, FieldProxy):
        return value.ref
    return Literal(value)


class _PredicateOps:
    """Boolean composition shared by every predicate variant."""

    def __and__(self, other: Predicate) -> And:
        return And((self, other))  # type: ignore[arg-type]

    def __or__(self, other: Predicate) -> Or:
        return Or((self, other))  # type: ignore[arg-type]

    def __invert__(self) -> Not:
        return Not(self)  # type: ignore[arg-type]


@dataclass(frozen=True)
class Comparison(_PredicateOps):
    """A binary comparison between two operands.

    Raw scalars are wrapped into ``Literal``; use ``FieldRef`` (or ``field()``)
    to reference a stored attribute on either side.
    """

    lhs: Operand
    op: str
    rhs: Operand

    def __post_init__(self) -> None:
        if self.op not in COMPARISON_OPS:
            raise InvalidPredicateError(
                f"Unknown comparison operator '{self.op}'. Valid operators: {COMPARISON_OPS}"
            )
        object.__setattr__(self, "lhs", _as_operand(self.lhs))
        object.__setattr__(self, "rhs", _as_operand(self.rhs))


@dataclass(frozen=True)
class And(_PredicateOps):
    """N-ary conjunction, folded pairwise left to right."""

    predicates: tuple[Predicate, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "predicates", _check_children("AND", self.predicates))


@dataclass(frozen=True)
class Or(_PredicateOps):
    """N-ary disjunction, folded pairwise left to right."""

    predicates: tuple[Predicate, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "predicates", _check_children("OR", self.predicates))


@dataclass(frozen=True)
class Not(_PredicateOps):
    """Unary negation."""

    predicate: Predicate

    def __post_init__(self) -> None:
        if not isinstance(self.predicate, _PREDICATE_TYPES):
            raise InvalidPredicateError(
                f"NOT expects a predicate, got {type(self.predicate).__name__}"
            )


Predicate = Union[Comparison, And, Or, Not]
_PREDICATE_TYPES = (Comparison, And, Or, Not)


def _check_children(op: str, predicates: Any) -> tuple[Predicate, ...]:
    children = tuple(predicates)
    if not children:
        raise InvalidPredicateError(f"{op} requires at least one predicate")
    for child in children:
        if not isinstance(child, _PREDICATE_TYPES):
            raise InvalidPredicateError(f"{op} expects predicates, got {type(child).__name__}")
    return children


class FieldProxy:
    """Proxy that generates comparisons from Python operators.

    Usage: field("currency") == "usd", field("price") > field("floor")
    """

    def __init__(self, name: str) -> None:
        self.ref = FieldRef(name)

    def __eq__(self, other: object) -> Comparison:  # type: ignore[override]
        return Comparison(self.ref, "=", _as_operand(other))

    def __ne__(self, other: object) -> Comparison:  # type: ignore[override]
        return Comparison(self.ref, "!=", _as_operand(other))

    def __gt__(self, other: Any) -> Comparison:
        return Comparison(self.ref, ">", _as_operand(other))

    def __ge__(self, other: Any) -> Comparison:
        return Comparison(self.ref, ">=", _as_operand(other))

    def __lt__(self, other: Any) -> Comparison:
        return Comparison(self.ref, "<", _as_operand(other))

    def __le__(self, other: Any) -> Comparison:
        return Comparison(self.ref, "<=", _as_operand(other))

    def contains(self, value: Any) -> Comparison:
        return Comparison(self.ref, "CONTAINS", _as_operand(value))

    def not_contains(self, value: Any) -> Comparison:
        return Comparison(self.ref, "NOT CONTAINS", _as_operand(value))

    __hash__ = None  # type: ignore[assignment]


def field(name: str) -> FieldProxy:
    """Create a proxy for building comparisons against a record attribute."""
    return FieldProxy(name)


# --- Wire shape: plain nested dicts ---


def _operand_from_wire(raw: Any) -> Operand:
    if isinstance(raw, dict):
        name = raw.get("name")
        if set(raw) != {"name"} or not isinstance(name, str):
            raise InvalidPredicateError(f"Field reference must be {{'name': str}}, got {raw!r}")
        return FieldRef(name)
    if raw is None or not isinstance(raw, _SCALAR_TYPES):
        raise InvalidPredicateError(f"Invalid operand: {raw!r}")
    return Literal(raw)


def _operand_to_wire(operand: Operand) -> Any:
    if isinstance(operand, FieldRef):
        return {"name": operand.name}
    return operand.value


def predicate_from_dict(raw: Any) -> Predicate:
    """Parse the nested-dict wire form of a predicate."""
    if not isinstance(raw, dict):
        raise InvalidPredicateError(f"Predicate must be an object, got {type(raw).__name__}")
    op = raw.get("operator")
    if op == "NOT":
        if "expr" not in raw:
            raise InvalidPredicateError("NOT predicate requires 'expr'")
        return Not(predicate_from_dict(raw["expr"]))
    if op in LOGICAL_OPS:
        children = raw.get("predicates")
        if not isinstance(children, list):
            raise InvalidPredicateError(f"{op} predicate requires a 'predicates' list")
        parsed = tuple(predicate_from_dict(c) for c in children)
        return And(parsed) if op == "AND" else Or(parsed)
    if op in COMPARISON_OPS:
        if "lhs" not in raw or "rhs" not in raw:
            raise InvalidPredicateError(f"Comparison '{op}' requires 'lhs' and 'rhs'")
        return Comparison(_operand_from_wire(raw["lhs"]), op, _operand_from_wire(raw["rhs"]))
    raise InvalidPredicateError(f"Unknown predicate operator: {op!r}")


def predicate_to_dict(predicate: Predicate) -> dict[str, Any]:
    """Serialize a predicate into its nested-dict wire form."""
    if isinstance(predicate, Comparison):
        return {
            "lhs": _operand_to_wire(predicate.lhs),
            "operator": predicate.op,
            "rhs": _operand_to_wire(predicate.rhs),
        }
    if isinstance(predicate, Not):
        return {"operator": "NOT", "expr": predicate_to_dict(predicate.predicate)}
    if isinstance(predicate, (And, Or)):
        return {
            "operator": "AND" if isinstance(predicate, And) else "OR",
            "predicates": [predicate_to_dict(p) for p in predicate.predicates],
        }
    raise InvalidPredicateError(f"Unknown predicate type: {type(predicate)}")

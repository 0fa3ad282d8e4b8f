"""Tests for CLI filter parser."""

import pytest

from pricevault.cli._filters import combine, parse_cli_filters, parse_filter_args, parse_where
from pricevault.errors import InvalidPredicateError
from pricevault.filters import And, Comparison, FieldRef, Literal, Or


def test_parse_empty():
    assert parse_cli_filters([]) is None
    assert parse_filter_args(None) is None
    assert parse_where(None) is None


def test_parse_single_eq():
    result = parse_cli_filters([("coin_id", "eq", '"btc"')])
    assert result == Comparison(FieldRef("coin_id"), "=", Literal("btc"))


def test_parse_numeric():
    result = parse_cli_filters([("usd", "gt", "25.5")])
    assert isinstance(result, Comparison)
    assert result.op == ">"
    assert result.rhs == Literal(25.5)


def test_parse_field_reference():
    result = parse_cli_filters([("bid", "lt", '{"name": "ask"}')])
    assert result == Comparison(FieldRef("bid"), "<", FieldRef("ask"))


def test_parse_multiple_and():
    result = parse_cli_filters([("coin_id", "eq", '"btc"'), ("usd", "gte", "18")])
    assert isinstance(result, And)
    assert len(result.predicates) == 2


def test_parse_all_ops():
    for op_token, expected_op in [
        ("eq", "="),
        ("ne", "!="),
        ("gt", ">"),
        ("gte", ">="),
        ("lt", "<"),
        ("lte", "<="),
        ("contains", "CONTAINS"),
        ("not_contains", "NOT CONTAINS"),
    ]:
        result = parse_cli_filters([("x", op_token, '"v"')])
        assert result.op == expected_op


def test_parse_unknown_op():
    with pytest.raises(ValueError, match="Unknown filter operator"):
        parse_cli_filters([("x", "like", '"v"')])


def test_parse_invalid_value_json():
    with pytest.raises(ValueError):
        parse_cli_filters([("x", "eq", "not json")])


def test_parse_filter_args_splits_value_with_spaces():
    result = parse_filter_args(['name eq "wrapped bitcoin"'])
    assert result == Comparison(FieldRef("name"), "=", Literal("wrapped bitcoin"))


def test_parse_filter_args_too_short():
    with pytest.raises(ValueError, match="FIELD OP VALUE_JSON"):
        parse_filter_args(["usd gt"])


def test_parse_where():
    result = parse_where(
        '{"operator": "OR", "predicates": [{"lhs": {"name": "a"}, "operator": "=", "rhs": 1}]}'
    )
    assert isinstance(result, Or)


def test_parse_where_invalid_json():
    with pytest.raises(InvalidPredicateError):
        parse_where("{oops")


def test_combine():
    a = parse_cli_filters([("a", "eq", "1")])
    b = parse_cli_filters([("b", "eq", "2")])
    assert combine(None, None) is None
    assert combine(a, None) == a
    assert combine(a, b) == And((a, b))

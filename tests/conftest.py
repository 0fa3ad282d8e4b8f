"""Shared fixtures: an in-process DynamoDB fake and local DuckDB repositories."""

from __future__ import annotations

import copy
import re
import threading
from decimal import Decimal
from typing import Any

import pytest
import structlog
from botocore.exceptions import ClientError

from pricevault.config import RepositoryConfig
from pricevault.repository import IndexSpec, key_fields
from pricevault.storage_duckdb import DuckDBRepository
from pricevault.storage_dynamodb import DynamoDBRepository

PRICE_INDEXES = {"by_coin": IndexSpec("coin_id", "timestamp")}


# --- Expression evaluation for the fake table ---

_TOKEN_RE = re.compile(r"\s*(<=|>=|<>|=|<|>|\(|\)|,|AND\b|OR\b|NOT\b|contains\b|[#:][A-Za-z0-9_]+)")

_MISSING = object()


def _tokenize(expression: str) -> list[str]:
    tokens: list[str] = []
    pos = 0
    expression = expression.strip()
    while pos < len(expression):
        m = _TOKEN_RE.match(expression, pos)
        if m is None:
            raise ValueError(f"Cannot tokenize expression at {pos}: {expression!r}")
        tokens.append(m.group(1))
        pos = m.end()
    return tokens


class _ExpressionEvaluator:
    """Evaluates the parenthesised expression dialect pricevault emits."""

    def __init__(self, expression: str, names: dict[str, str], values: dict[str, Any]) -> None:
        self.tokens = _tokenize(expression)
        self.names = names
        self.values = values

    def matches(self, item: dict[str, Any]) -> bool:
        self.pos = 0
        self.item = item
        result = self._condition()
        while self.pos < len(self.tokens) and self.tokens[self.pos] in ("AND", "OR"):
            op = self._next()
            rhs = self._condition()
            result = (result and rhs) if op == "AND" else (result or rhs)
        return result

    def _next(self) -> str:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def _expect(self, tok: str) -> None:
        got = self._next()
        if got != tok:
            raise ValueError(f"Expected {tok!r}, got {got!r}")

    def _operand(self) -> Any:
        tok = self._next()
        if tok.startswith("#"):
            return self.item.get(self.names[tok], _MISSING)
        if tok.startswith(":"):
            return self.values[tok]
        raise ValueError(f"Expected operand, got {tok!r}")

    def _condition(self) -> bool:
        tok = self.tokens[self.pos]
        if tok == "contains":
            self.pos += 1
            self._expect("(")
            haystack = self._operand()
            self._expect(",")
            needle = self._operand()
            self._expect(")")
            return _contains(haystack, needle)
        if tok == "(":
            self.pos += 1
            if self.tokens[self.pos] == "NOT":
                self.pos += 1
                inner = self._condition()
                self._expect(")")
                return not inner
            if self.tokens[self.pos][0] in "#:":
                result = self._comparison()
            else:
                result = self._condition()
                while self.tokens[self.pos] in ("AND", "OR"):
                    op = self._next()
                    rhs = self._condition()
                    result = (result and rhs) if op == "AND" else (result or rhs)
            self._expect(")")
            return result
        return self._comparison()

    def _comparison(self) -> bool:
        lhs = self._operand()
        op = self._next()
        rhs = self._operand()
        if lhs is _MISSING or rhs is _MISSING:
            return False
        try:
            if op == "=":
                return lhs == rhs
            if op == "<>":
                return lhs != rhs
            if op == "<":
                return lhs < rhs
            if op == "<=":
                return lhs <= rhs
            if op == ">":
                return lhs > rhs
            if op == ">=":
                return lhs >= rhs
        except TypeError:
            return False
        raise ValueError(f"Unknown operator {op!r}")


def _contains(haystack: Any, needle: Any) -> bool:
    if haystack is _MISSING or needle is _MISSING:
        return False
    if isinstance(haystack, str):
        return isinstance(needle, str) and needle in haystack
    if isinstance(haystack, (list, set)):
        return needle in haystack
    return False


def _store_numbers(value: Any) -> Any:
    """Mimic boto3's serializer: reject floats, return numbers as Decimal."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        raise TypeError("Float types are not supported. Use Decimal types instead.")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, dict):
        return {k: _store_numbers(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_store_numbers(v) for v in value]
    return value


def _client_error(code: str, operation: str, **extra: Any) -> ClientError:
    response: dict[str, Any] = {"Error": {"Code": code, "Message": code}}
    response.update(extra)
    return ClientError(response, operation)


# --- Fake boto3 resource ---


class FakeTable:
    """In-memory stand-in for a boto3 ``Table`` with DynamoDB paging rules.

    Each scan/query request evaluates at most ``page_size`` items (before the
    filter is applied, as DynamoDB's per-request budget does) and returns a
    ``LastEvaluatedKey`` whenever items remain.
    """

    def __init__(
        self,
        name: str,
        key_attrs: tuple[str, ...],
        indexes: dict[str, IndexSpec],
        page_size: int,
    ) -> None:
        self.name = name
        self.key_attrs = key_attrs
        self.indexes = indexes
        self.page_size = page_size
        self.items: dict[tuple[str, ...], dict[str, Any]] = {}
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    # helpers

    def _key_of(self, item: dict[str, Any]) -> tuple[str, ...]:
        return tuple(str(item[a]) for a in self.key_attrs)

    def _log(self, operation: str, params: dict[str, Any]) -> None:
        with self._lock:
            self.requests.append((operation, copy.deepcopy(params)))

    def requests_for(self, operation: str) -> list[dict[str, Any]]:
        return [params for op, params in self.requests if op == operation]

    def _check_condition(self, key: dict[str, Any], params: dict[str, Any], operation: str) -> None:
        if "ConditionExpression" in params and self._key_of(key) not in self.items:
            raise _client_error("ConditionalCheckFailedException", operation)

    def _apply_update(self, key: dict[str, Any], params: dict[str, Any]) -> None:
        names = params.get("ExpressionAttributeNames", {})
        values = params.get("ExpressionAttributeValues", {})
        body = params["UpdateExpression"]
        assert body.startswith("SET ")
        item = self.items.setdefault(self._key_of(key), dict(key))
        for name_ph, value_ph in re.findall(r"(#\w+) = (:\w+)", body):
            attr = names[name_ph]
            assert attr not in self.key_attrs, "key attributes cannot be updated"
            item[attr] = _store_numbers(values[value_ph])

    # Table API

    def put_item(self, Item: dict[str, Any]) -> dict[str, Any]:
        self._log("put_item", {"Item": Item})
        stored = _store_numbers(Item)
        self.items[self._key_of(stored)] = stored
        return {}

    def get_item(self, Key: dict[str, Any]) -> dict[str, Any]:
        self._log("get_item", {"Key": Key})
        item = self.items.get(self._key_of(Key))
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def delete_item(self, Key: dict[str, Any], **params: Any) -> dict[str, Any]:
        self._log("delete_item", {"Key": Key, **params})
        self._check_condition(Key, params, "DeleteItem")
        self.items.pop(self._key_of(Key), None)
        return {}

    def update_item(self, Key: dict[str, Any], **params: Any) -> dict[str, Any]:
        self._log("update_item", {"Key": Key, **params})
        self._check_condition(Key, params, "UpdateItem")
        self._apply_update(Key, params)
        return {}

    def scan(self, **params: Any) -> dict[str, Any]:
        self._log("scan", params)
        return self._page(self._ordered(params.get("IndexName")), params)

    def query(self, **params: Any) -> dict[str, Any]:
        self._log("query", params)
        names = params.get("ExpressionAttributeNames", {})
        values = params.get("ExpressionAttributeValues", {})
        key_condition = params["KeyConditionExpression"]
        m = re.match(r"#partition_key = :partition_value(?: AND (.+))?$", key_condition)
        assert m, f"unsupported key condition {key_condition!r}"
        partition_attr = names["#partition_key"]
        partition_value = values[":partition_value"]
        candidates = [
            item
            for item in self._ordered(params.get("IndexName"))
            if item.get(partition_attr) == partition_value
        ]
        range_clause = m.group(1)
        if range_clause:
            candidates = [
                item
                for item in candidates
                if self._range_matches(item, range_clause, names, values)
            ]
            range_attr = names["#range_key"]
            candidates.sort(key=lambda item: item.get(range_attr))
        if params.get("ScanIndexForward") is False:
            candidates.reverse()
        return self._page(candidates, params)

    def _range_matches(
        self, item: dict[str, Any], clause: str, names: dict[str, str], values: dict[str, Any]
    ) -> bool:
        attr = names["#range_key"]
        if attr not in item:
            return False
        value = values[":range_value"]
        if clause.startswith("begins_with"):
            return str(item[attr]).startswith(str(value))
        op = clause.split()[1]
        expression = f"(#range_key {'<>' if op == '!=' else op} :range_value)"
        return _ExpressionEvaluator(expression, names, values).matches(item)

    def _ordered(self, index_name: str | None) -> list[dict[str, Any]]:
        if index_name is not None and index_name not in self.indexes:
            raise _client_error("ValidationException", "Query")
        items = sorted(self.items.values(), key=self._key_of)
        if index_name is not None:
            # Sparse index: only items carrying the index partition attribute.
            partition_attr = self.indexes[index_name].partition_key
            items = [item for item in items if partition_attr in item]
        return items

    def _page(self, candidates: list[dict[str, Any]], params: dict[str, Any]) -> dict[str, Any]:
        start_key = params.get("ExclusiveStartKey")
        if start_key:
            marker = self._key_of(start_key)
            position = next(
                (i + 1 for i, item in enumerate(candidates) if self._key_of(item) == marker),
                None,
            )
            if position is None:
                candidates = [item for item in candidates if self._key_of(item) > marker]
            else:
                candidates = candidates[position:]

        budget = min(self.page_size, params.get("Limit", self.page_size))
        evaluated = candidates[:budget]
        matched = evaluated
        if "FilterExpression" in params:
            evaluator = _ExpressionEvaluator(
                params["FilterExpression"],
                params.get("ExpressionAttributeNames", {}),
                params.get("ExpressionAttributeValues", {}),
            )
            matched = [item for item in evaluated if evaluator.matches(item)]

        resp: dict[str, Any] = {
            "Items": copy.deepcopy(matched),
            "Count": len(matched),
            "ScannedCount": len(evaluated),
        }
        if len(candidates) > budget:
            last = evaluated[-1]
            last_key = {a: last[a] for a in self.key_attrs}
            index_name = params.get("IndexName")
            if index_name is not None:
                spec = self.indexes[index_name]
                for attr in (spec.partition_key, spec.range_key):
                    if attr is not None and attr in last:
                        last_key[attr] = last[attr]
            resp["LastEvaluatedKey"] = copy.deepcopy(last_key)
        return resp


class FakeClient:
    """Batch and transaction calls of ``resource.meta.client``."""

    def __init__(self, resource: FakeResource) -> None:
        self._resource = resource
        self._lock = threading.Lock()

    def batch_write_item(self, RequestItems: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
        with self._lock:
            for table_name, requests in RequestItems.items():
                table = self._resource.tables[table_name]
                table._log("batch_write_item", {"RequestItems": {table_name: requests}})
                if len(requests) > 25:
                    raise _client_error("ValidationException", "BatchWriteItem")
                for request in requests:
                    if "PutRequest" in request:
                        item = _store_numbers(request["PutRequest"]["Item"])
                        table.items[table._key_of(item)] = item
                    else:
                        table.items.pop(table._key_of(request["DeleteRequest"]["Key"]), None)
        return {"UnprocessedItems": {}}

    def batch_get_item(self, RequestItems: dict[str, dict[str, Any]]) -> dict[str, Any]:
        responses: dict[str, list[dict[str, Any]]] = {}
        with self._lock:
            for table_name, request in RequestItems.items():
                table = self._resource.tables[table_name]
                table._log("batch_get_item", {"RequestItems": {table_name: request}})
                if len(request["Keys"]) > 100:
                    raise _client_error("ValidationException", "BatchGetItem")
                found = [table.items.get(table._key_of(k)) for k in request["Keys"]]
                responses[table_name] = [copy.deepcopy(item) for item in found if item is not None]
        return {"Responses": responses, "UnprocessedKeys": {}}

    def transact_write_items(self, TransactItems: list[dict[str, Any]]) -> dict[str, Any]:
        with self._lock:
            if len(TransactItems) > 25:
                raise _client_error("ValidationException", "TransactWriteItems")
            updates = [entry["Update"] for entry in TransactItems]
            if updates:
                first = self._resource.tables[updates[0]["TableName"]]
                first._log("transact_write_items", {"TransactItems": TransactItems})
            reasons = []
            for update in updates:
                table = self._resource.tables[update["TableName"]]
                exists = table._key_of(update["Key"]) in table.items
                reasons.append({"Code": "None" if exists else "ConditionalCheckFailed"})
            if any(r["Code"] != "None" for r in reasons):
                raise _client_error(
                    "TransactionCanceledException",
                    "TransactWriteItems",
                    CancellationReasons=reasons,
                )
            for update in updates:
                table = self._resource.tables[update["TableName"]]
                table._apply_update(update["Key"], update)
        return {}


class _Meta:
    def __init__(self, client: FakeClient) -> None:
        self.client = client


class FakeResource:
    """Stand-in for ``boto3.resource("dynamodb")``."""

    def __init__(self) -> None:
        self.tables: dict[str, FakeTable] = {}
        self.meta = _Meta(FakeClient(self))

    def create_table(
        self,
        name: str,
        key_attrs: tuple[str, ...],
        indexes: dict[str, IndexSpec] | None = None,
        page_size: int = 1000,
    ) -> FakeTable:
        table = FakeTable(name, key_attrs, indexes or {}, page_size)
        self.tables[name] = table
        return table

    def Table(self, name: str) -> FakeTable:
        return self.tables[name]


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo logging configured by CLI invocations."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def fake_dynamodb():
    return FakeResource()


@pytest.fixture
def price_table(fake_dynamodb):
    """A fake ``prices`` table keyed by ``id``; two items are evaluated per request."""
    return fake_dynamodb.create_table("prices", ("id",), PRICE_INDEXES, page_size=2)


@pytest.fixture
def dynamo_repo(fake_dynamodb, price_table):
    return DynamoDBRepository(
        fake_dynamodb,
        "prices",
        key_fields("id"),
        indexes=PRICE_INDEXES,
        config=RepositoryConfig(),
    )


@pytest.fixture
def duck_repo():
    repo = DuckDBRepository(
        ":memory:",
        "prices",
        key_fields=("id",),
        indexes=PRICE_INDEXES,
        config=RepositoryConfig(page_size=2),
    )
    yield repo
    repo.close()


@pytest.fixture(params=["dynamo_repo", "duck_repo"])
def repo(request):
    """Every repository implementation, for behaviour they must share."""
    return request.getfixturevalue(request.param)


def price(id: str, coin_id: str, timestamp: int, usd: float, **extra: Any) -> dict[str, Any]:
    return {"id": id, "coin_id": coin_id, "timestamp": timestamp, "usd": usd, **extra}

"""DynamoDB storage backend."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Callable, Iterator, Mapping, Sequence

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from pricevault.config import RepositoryConfig
from pricevault.errors import NotFoundError, UnknownIndexError
from pricevault.expressions import compile_key_condition, compile_predicate, compile_update
from pricevault.filters import Predicate
from pricevault.observability import get_logger
from pricevault.repository import (
    Key,
    KeyExtractor,
    NativePage,
    PaginatedRepository,
    PrimaryKey,
    QueryPlan,
    QueryTarget,
    Record,
    SecondaryIndex,
    chunked,
)

_RANGE_OPS = ("=", "<", "<=", ">", ">=", "begins_with")


def _to_dynamo(value: Any) -> Any:
    """Convert floats to Decimal, recursively; DynamoDB rejects Python floats."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dynamo(v) for v in value]
    return value


def _from_dynamo(value: Any) -> Any:
    """Convert Decimals returned by boto3 back to int or float, recursively."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    if isinstance(value, set):
        return {_from_dynamo(v) for v in value}
    return value


def _key_from_dynamo(key: Key) -> Key:
    """Convert a returned key exactly: integral Decimals become int, the rest stay Decimal."""
    return {
        name: int(v) if isinstance(v, Decimal) and v == v.to_integral_value() else v
        for name, v in key.items()
    }


def _error_code(err: ClientError) -> str:
    return err.response.get("Error", {}).get("Code", "")


def _failed_condition_index(err: ClientError) -> int | None:
    """Return the position of the item whose existence condition failed, if any."""
    code = _error_code(err)
    if code == "ConditionalCheckFailedException":
        return 0
    if code == "TransactionCanceledException":
        reasons = err.response.get("CancellationReasons") or []
        for i, reason in enumerate(reasons):
            if reason.get("Code") == "ConditionalCheckFailed":
                return i
    return None


def build_resource(config: RepositoryConfig) -> Any:
    """Create a boto3 DynamoDB service resource from repository config."""
    session = boto3.Session(region_name=config.region)
    return session.resource(
        "dynamodb",
        region_name=config.region,
        endpoint_url=config.endpoint_url,
        config=BotoConfig(
            connect_timeout=config.request_timeout_s,
            read_timeout=config.request_timeout_s,
            retries={"max_attempts": config.max_attempts, "mode": "standard"},
        ),
    )


class DynamoDBRepository(PaginatedRepository):
    """Repository over a single DynamoDB table and its global secondary indexes.

    Point operations go through the boto3 ``Table`` resource. Batch and
    transactional writes go through the resource's client, which accepts the
    same plain Python types; the client is thread-safe, so batch chunks are
    dispatched concurrently on a thread pool.
    """

    backend = "dynamodb"

    def __init__(
        self,
        resource: Any,
        table_name: str,
        key_extractor: KeyExtractor,
        *,
        indexes: Mapping[str, Any] | None = None,
        config: RepositoryConfig | None = None,
    ) -> None:
        super().__init__(key_extractor, indexes, config)
        self.table_name = table_name
        self._resource = resource
        self._table = resource.Table(table_name)
        self._client = resource.meta.client
        self._log = get_logger(__name__, component="dynamodb", table=table_name)

    @classmethod
    def from_config(
        cls,
        table_name: str,
        key_extractor: KeyExtractor,
        *,
        indexes: Mapping[str, Any] | None = None,
        config: RepositoryConfig | None = None,
    ) -> DynamoDBRepository:
        cfg = config or RepositoryConfig()
        return cls(build_resource(cfg), table_name, key_extractor, indexes=indexes, config=cfg)

    @contextmanager
    def _store_call(self, operation: str, keys: Sequence[Key] | None = None) -> Iterator[None]:
        """Log and re-raise store errors; map failed existence checks to NotFoundError."""
        try:
            yield
        except ClientError as e:
            failed = _failed_condition_index(e) if keys else None
            if keys and failed is not None and failed < len(keys):
                self._log.info("record_not_found", operation=operation, key=keys[failed])
                raise NotFoundError(keys[failed]) from e
            self._log.error(
                "dynamodb_request_failed",
                operation=operation,
                error_code=_error_code(e),
                error=str(e),
            )
            raise
        except BotoCoreError as e:
            self._log.error("dynamodb_request_failed", operation=operation, error=str(e))
            raise

    def _run_chunks(self, fn: Callable[[list[Any]], Any], chunks: list[list[Any]]) -> list[Any]:
        """Run every chunk concurrently and wait for all of them.

        The first failing chunk's error is raised once all chunks have finished;
        chunks that succeeded stay written.
        """
        if not chunks:
            return []
        if len(chunks) == 1:
            return [fn(chunks[0])]
        workers = self.config.max_workers or len(chunks)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pricevault-batch") as pool:
            futures = [pool.submit(fn, chunk) for chunk in chunks]
            return [f.result() for f in futures]

    # --- Create & update ---

    def put(self, key: Key, value: Record) -> None:
        item = self._stamp_item(key, value)
        with self._store_call("put"):
            self._table.put_item(Item=_to_dynamo(item))

    def put_many(self, items: Sequence[tuple[Key, Record]]) -> None:
        requests = [
            {"PutRequest": {"Item": _to_dynamo(self._stamp_item(key, value))}}
            for key, value in items
        ]
        self._run_chunks(
            self._write_chunk, list(chunked(requests, self.config.write_batch_size))
        )

    def _write_chunk(self, requests: list[dict[str, Any]]) -> None:
        with self._store_call("batch_write"):
            resp = self._client.batch_write_item(RequestItems={self.table_name: requests})
        unprocessed = (resp.get("UnprocessedItems") or {}).get(self.table_name, [])
        if unprocessed:
            self._log.warning("batch_write_unprocessed", count=len(unprocessed))

    # --- Read ---

    def get(self, key: Key) -> Record:
        with self._store_call("get"):
            resp = self._table.get_item(Key=_to_dynamo(key))
        item = resp.get("Item")
        if item is None:
            raise NotFoundError(key)
        return _from_dynamo(item)

    def get_many(self, keys: Sequence[Key]) -> list[Record]:
        chunks = list(chunked([_to_dynamo(k) for k in keys], self.config.read_batch_size))
        responses = self._run_chunks(self._read_chunk, chunks)
        return [record for chunk_records in responses for record in chunk_records]

    def _read_chunk(self, keys: list[Key]) -> list[Record]:
        with self._store_call("batch_get"):
            resp = self._client.batch_get_item(RequestItems={self.table_name: {"Keys": keys}})
        unprocessed = (resp.get("UnprocessedKeys") or {}).get(self.table_name, {})
        if unprocessed.get("Keys"):
            self._log.warning("batch_get_unprocessed", count=len(unprocessed["Keys"]))
        items = (resp.get("Responses") or {}).get(self.table_name, [])
        return [_from_dynamo(item) for item in items]

    # --- Delete ---

    def delete(self, key: Key) -> None:
        condition = compile_key_condition(key)
        with self._store_call("delete", keys=[key]):
            self._table.delete_item(
                Key=_to_dynamo(key),
                ConditionExpression=condition.expression,
                ExpressionAttributeNames=condition.names,
            )

    def delete_many(self, keys: Sequence[Key]) -> None:
        requests = [{"DeleteRequest": {"Key": _to_dynamo(key)}} for key in keys]
        self._run_chunks(
            self._write_chunk, list(chunked(requests, self.config.write_batch_size))
        )

    # --- Partial update ---

    def _update_params(self, key: Key, fields: Mapping[str, Any]) -> dict[str, Any]:
        # Key attributes cannot be SET on an existing item.
        update = compile_update(self._stamp_update(key, fields))
        condition = compile_key_condition(key)
        return {
            "Key": _to_dynamo(key),
            "UpdateExpression": update.expression,
            "ConditionExpression": condition.expression,
            "ExpressionAttributeNames": {**update.names, **condition.names},
            "ExpressionAttributeValues": _to_dynamo(update.values),
        }

    def partial_update(self, key: Key, fields: Mapping[str, Any]) -> None:
        params = self._update_params(key, fields)
        with self._store_call("partial_update", keys=[key]):
            self._table.update_item(**params)

    def partial_update_many(self, items: Sequence[tuple[Key, Mapping[str, Any]]]) -> None:
        """Apply updates as one all-or-nothing transaction per chunk.

        Atomicity holds within a chunk only; chunks commit independently.
        """
        self._run_chunks(
            self._transact_chunk, list(chunked(list(items), self.config.transaction_batch_size))
        )

    def _transact_chunk(self, items: list[tuple[Key, Mapping[str, Any]]]) -> None:
        transact_items = [
            {"Update": {"TableName": self.table_name, **self._update_params(key, fields)}}
            for key, fields in items
        ]
        with self._store_call("transact_update", keys=[key for key, _ in items]):
            self._client.transact_write_items(TransactItems=transact_items)

    # --- Query ---

    def _fetch_page(self, plan: QueryPlan, start_key: Key | None) -> NativePage:
        params: dict[str, Any] = {}
        names: dict[str, str] = {}
        values: dict[str, Any] = {}

        if plan.filter is not None:
            compiled = compile_predicate(plan.filter)
            params["FilterExpression"] = compiled.expression
            names.update(compiled.names)
            values.update(compiled.values)
        if plan.index_name is not None:
            params["IndexName"] = plan.index_name
        if plan.mode != "scan":
            params["KeyConditionExpression"] = "#partition_key = :partition_value"
            names["#partition_key"] = plan.partition_field  # type: ignore[assignment]
            values[":partition_value"] = plan.partition
        if names:
            params["ExpressionAttributeNames"] = names
        if values:
            params["ExpressionAttributeValues"] = _to_dynamo(values)
        if start_key:
            params["ExclusiveStartKey"] = _to_dynamo(start_key)

        if plan.mode == "scan":
            with self._store_call("scan"):
                resp = self._table.scan(**params)
        else:
            with self._store_call("query"):
                resp = self._table.query(**params)

        last_key = resp.get("LastEvaluatedKey")
        return NativePage(
            records=[_from_dynamo(item) for item in resp.get("Items", [])],
            last_evaluated_key=_key_from_dynamo(last_key) if last_key else None,
        )

    def query_range(
        self,
        target: QueryTarget,
        partition: Any,
        range_value: Any,
        *,
        range_op: str = "=",
        range_field: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
        filter: Predicate | None = None,
    ) -> list[Record]:
        """Run one native key-condition query with a range-key condition.

        Unlike ``query`` this issues a single request and does not follow
        continuation tokens; ``limit`` caps the items the store evaluates.
        """
        if range_op not in _RANGE_OPS:
            raise ValueError(f"Unsupported range operator '{range_op}'. Valid: {_RANGE_OPS}")

        params: dict[str, Any] = {}
        if isinstance(target, SecondaryIndex):
            index = self.indexes.get(target.name)
            if index is None:
                raise UnknownIndexError(target.name, sorted(self.indexes))
            partition_field = index.partition_key
            range_field = range_field or index.range_key
            params["IndexName"] = target.name
        elif isinstance(target, PrimaryKey):
            partition_field = target.field
        else:
            raise TypeError(f"Unsupported query target: {target!r}")
        if range_field is None:
            raise ValueError("range_field is required when the target has no range key")

        if range_op == "begins_with":
            range_clause = "begins_with(#range_key, :range_value)"
        else:
            range_clause = f"#range_key {range_op} :range_value"
        names = {"#partition_key": partition_field, "#range_key": range_field}
        values = {":partition_value": partition, ":range_value": range_value}

        if filter is not None:
            compiled = compile_predicate(filter)
            params["FilterExpression"] = compiled.expression
            names.update(compiled.names)
            values.update(compiled.values)

        params.update(
            KeyConditionExpression=f"#partition_key = :partition_value AND {range_clause}",
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=_to_dynamo(values),
            ScanIndexForward=ascending,
        )
        if limit is not None:
            params["Limit"] = limit

        with self._store_call("query_range"):
            resp = self._table.query(**params)
        return [_from_dynamo(item) for item in resp.get("Items", [])]

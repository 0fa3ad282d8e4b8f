"""Repository contract, shared paginated query engine and storage binding."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping, Protocol, Sequence, Union, runtime_checkable
from urllib.parse import parse_qs, urlparse

from pricevault.config import RepositoryConfig
from pricevault.errors import StorageBackendError, UnknownIndexError
from pricevault.filters import Predicate
from pricevault.observability import get_logger

Key = dict[str, Any]
Record = dict[str, Any]
KeyExtractor = Callable[[Record], Key]

logger = get_logger(__name__, component="repository")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def key_fields(*names: str) -> KeyExtractor:
    """Build a key extractor that picks the named attributes from a record."""
    if not names:
        raise ValueError("key_fields() requires at least one field name")

    def extract(record: Record) -> Key:
        try:
            return {name: record[name] for name in names}
        except KeyError as e:
            raise ValueError(f"Record is missing key field {e.args[0]!r}") from e

    return extract


def chunked(items: Sequence[Any], size: int) -> Iterator[list[Any]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


@dataclass(frozen=True)
class IndexSpec:
    """Partition/range attribute pair of a registered secondary index."""

    partition_key: str
    range_key: str | None = None


@dataclass(frozen=True)
class PrimaryKey:
    """Query the table's primary index, partitioned on ``field``."""

    field: str


@dataclass(frozen=True)
class SecondaryIndex:
    """Query a registered secondary index by name."""

    name: str


QueryTarget = Union[PrimaryKey, SecondaryIndex]


@dataclass
class Item:
    """A record returned by a query, paired with its extracted key."""

    key: Key
    value: Record


@dataclass
class QueryResult:
    """One logical page of query results.

    ``last_evaluated_key`` is None once the matching set is exhausted; otherwise
    pass it back as ``start_key`` to continue.
    """

    items: list[Item] = field(default_factory=list)
    last_evaluated_key: Key | None = None

    @property
    def values(self) -> list[Record]:
        return [item.value for item in self.items]


@dataclass(frozen=True)
class QueryPlan:
    """Routing decision for a query, fixed for every native page it issues."""

    mode: str  # "index_query", "primary_query" or "scan"
    partition_field: str | None = None
    partition: Any = None
    index_name: str | None = None
    index: IndexSpec | None = None
    filter: Predicate | None = None


@dataclass
class NativePage:
    """A single page as returned by one native store request."""

    records: list[Record]
    last_evaluated_key: Key | None = None


@runtime_checkable
class Repository(Protocol):
    """Storage-agnostic key-value repository."""

    def put(self, key: Key, value: Record) -> None: ...

    def put_many(self, items: Sequence[tuple[Key, Record]]) -> None: ...

    def get(self, key: Key) -> Record: ...

    def get_many(self, keys: Sequence[Key]) -> list[Record]: ...

    def delete(self, key: Key) -> None: ...

    def delete_many(self, keys: Sequence[Key]) -> None: ...

    def partial_update(self, key: Key, fields: Mapping[str, Any]) -> None: ...

    def partial_update_many(self, items: Sequence[tuple[Key, Mapping[str, Any]]]) -> None: ...

    def query(
        self,
        *,
        target: QueryTarget | None = None,
        partition: Any = None,
        start_key: Key | None = None,
        limit: int | None = None,
        filter: Predicate | None = None,
    ) -> QueryResult: ...

    def close(self) -> None: ...


def _coerce_indexes(indexes: Mapping[str, Any] | None) -> dict[str, IndexSpec]:
    resolved: dict[str, IndexSpec] = {}
    for name, spec in (indexes or {}).items():
        if isinstance(spec, IndexSpec):
            resolved[name] = spec
        elif isinstance(spec, (tuple, list)) and 1 <= len(spec) <= 2:
            resolved[name] = IndexSpec(*spec)
        else:
            raise ValueError(f"Invalid index definition for '{name}': {spec!r}")
    return resolved


class PaginatedRepository:
    """Base class holding the query engine shared by every adapter.

    Adapters implement ``_fetch_page`` (one native request) and the CRUD
    operations; ``query`` threads continuation tokens between native pages
    until the caller's limit or the end of the matching data is reached.
    """

    backend = "abstract"

    def __init__(
        self,
        key_extractor: KeyExtractor,
        indexes: Mapping[str, Any] | None = None,
        config: RepositoryConfig | None = None,
    ) -> None:
        self.key_extractor = key_extractor
        self.indexes = _coerce_indexes(indexes)
        self.config = config or RepositoryConfig()

    def _fetch_page(self, plan: QueryPlan, start_key: Key | None) -> NativePage:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def _stamp_item(self, key: Key, value: Record) -> Record:
        """Embed the key in the record and stamp the creation time if absent."""
        item = {**value, **key}
        if self.config.created_at_attr not in item:
            item[self.config.created_at_attr] = _now_ms()
        return item

    def _stamp_update(self, key: Key, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Drop key attributes and None values, then stamp the update time."""
        stamped = {
            name: value
            for name, value in fields.items()
            if name not in key and value is not None
        }
        stamped[self.config.updated_at_attr] = _now_iso()
        return stamped

    def _plan_query(
        self,
        target: QueryTarget | None,
        partition: Any,
        filter: Predicate | None,
    ) -> QueryPlan:
        if isinstance(target, SecondaryIndex):
            index = self.indexes.get(target.name)
            if index is None:
                raise UnknownIndexError(target.name, sorted(self.indexes))
            if partition is not None:
                return QueryPlan(
                    mode="index_query",
                    partition_field=index.partition_key,
                    partition=partition,
                    index_name=target.name,
                    index=index,
                    filter=filter,
                )
            return QueryPlan(mode="scan", index_name=target.name, index=index, filter=filter)
        if isinstance(target, PrimaryKey):
            if partition is not None:
                return QueryPlan(
                    mode="primary_query",
                    partition_field=target.field,
                    partition=partition,
                    filter=filter,
                )
            return QueryPlan(mode="scan", filter=filter)
        if target is not None:
            raise TypeError(f"Unsupported query target: {target!r}")
        if partition is not None:
            logger.warning("partition_ignored_without_target", backend=self.backend)
        return QueryPlan(mode="scan", filter=filter)

    def _cursor_for(self, record: Record, plan: QueryPlan) -> Key:
        cursor = dict(self.key_extractor(record))
        if plan.index is not None:
            for attr in (plan.index.partition_key, plan.index.range_key):
                if attr is not None and attr in record:
                    cursor[attr] = record[attr]
        return cursor

    def query(
        self,
        *,
        target: QueryTarget | None = None,
        partition: Any = None,
        start_key: Key | None = None,
        limit: int | None = None,
        filter: Predicate | None = None,
    ) -> QueryResult:
        """Return up to ``limit`` matching records, resuming from ``start_key``.

        Without a limit every matching record is returned in one call, which
        may issue an unbounded number of native requests.
        """
        if limit is not None and limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        plan = self._plan_query(target, partition, filter)

        page = self._fetch_page(plan, start_key)
        records = list(page.records)
        cursor = page.last_evaluated_key
        pages = 1
        while (limit is None or len(records) < limit) and cursor:
            page = self._fetch_page(plan, cursor)
            records.extend(page.records)
            cursor = page.last_evaluated_key
            pages += 1

        if limit is not None and len(records) > limit:
            records = records[:limit]
            cursor = self._cursor_for(records[-1], plan)

        logger.debug(
            "query_completed",
            backend=self.backend,
            mode=plan.mode,
            index=plan.index_name,
            pages=pages,
            items=len(records),
            truncated=cursor is not None,
        )
        return QueryResult(
            items=[Item(key=self.key_extractor(r), value=r) for r in records],
            last_evaluated_key=cursor or None,
        )


# --- Storage binding ---


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from a storage URI."""

    backend: str
    uri: str
    table: str
    db_path: str | None = None


def parse_storage_target(storage_uri: str) -> StorageTarget:
    """Resolve ``dynamodb://<table>`` or ``duckdb:///<path>?table=<name>``."""
    parsed = urlparse(storage_uri)

    if parsed.scheme == "dynamodb":
        table = parsed.netloc or parsed.path.strip("/")
        if not table:
            raise StorageBackendError("parse_storage_uri", f"Invalid dynamodb URI: {storage_uri}")
        return StorageTarget(backend="dynamodb", uri=storage_uri, table=table)

    if parsed.scheme == "duckdb":
        db_path = parsed.path
        if parsed.netloc:
            db_path = f"{parsed.netloc}{db_path}"
        elif db_path.startswith("//"):
            # duckdb:////abs/path -> /abs/path
            db_path = db_path[1:]
        else:
            # duckdb:///rel/path -> rel/path
            db_path = db_path[1:]
        if not db_path:
            db_path = ":memory:"
        tables = parse_qs(parsed.query).get("table", ["records"])
        return StorageTarget(backend="duckdb", uri=storage_uri, table=tables[0], db_path=db_path)

    raise StorageBackendError(
        "parse_storage_uri",
        f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
    )


def open_repository(
    storage_uri: str,
    *,
    key_field_names: Sequence[str],
    key_extractor: KeyExtractor | None = None,
    indexes: Mapping[str, Any] | None = None,
    config: RepositoryConfig | None = None,
) -> PaginatedRepository:
    """Open a repository adapter for a storage URI."""
    target = parse_storage_target(storage_uri)
    extractor = key_extractor or key_fields(*key_field_names)
    cfg = config or RepositoryConfig()
    if target.backend == "dynamodb":
        from pricevault.storage_dynamodb import DynamoDBRepository

        return DynamoDBRepository.from_config(
            target.table, extractor, indexes=indexes, config=cfg
        )
    if target.backend == "duckdb":
        from pricevault.storage_duckdb import DuckDBRepository

        assert target.db_path is not None
        return DuckDBRepository(
            target.db_path,
            target.table,
            key_fields=key_field_names,
            key_extractor=extractor,
            indexes=indexes,
            config=cfg,
        )
    raise StorageBackendError("open_repository", f"Unsupported backend '{target.backend}'")


__all__ = [
    "Item",
    "IndexSpec",
    "Key",
    "KeyExtractor",
    "NativePage",
    "PaginatedRepository",
    "PrimaryKey",
    "QueryPlan",
    "QueryResult",
    "QueryTarget",
    "Record",
    "Repository",
    "SecondaryIndex",
    "StorageTarget",
    "chunked",
    "key_fields",
    "open_repository",
    "parse_storage_target",
]

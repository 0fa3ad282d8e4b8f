"""DuckDB storage backend for local development and offline use."""

from __future__ import annotations

import json
import re
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Sequence

import duckdb

from pricevault.config import RepositoryConfig
from pricevault.errors import NotFoundError
from pricevault.filters import And, Comparison, FieldRef, Literal, Not, Operand, Or, Predicate
from pricevault.observability import get_logger
from pricevault.repository import (
    Key,
    KeyExtractor,
    NativePage,
    PaginatedRepository,
    QueryPlan,
    Record,
    chunked,
)
from pricevault.repository import key_fields as field_picker

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_SQL_OPS = {"<": "<", "<=": "<=", "=": "=", ">": ">", ">=": ">=", "!=": "<>"}

_NUMERIC_JSON_TYPES = "('BIGINT', 'UBIGINT', 'HUGEINT', 'DOUBLE')"


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _json_pointer_literal(name: str) -> str:
    """Render an attribute name as a quoted SQL literal holding a JSON pointer."""
    pointer = "/" + name.replace("~", "~0").replace("/", "~1")
    return "'" + pointer.replace("'", "''") + "'"


def _compile_operand(operand: Operand, other: Operand | None, params: list[Any]) -> str:
    if isinstance(operand, FieldRef):
        extract = f"json_extract_string(value_json, {_json_pointer_literal(operand.name)})"
        if isinstance(other, Literal) and isinstance(other.value, bool):
            return f"TRY_CAST({extract} AS BOOLEAN)"
        if isinstance(other, Literal) and isinstance(other.value, (int, float)):
            return f"TRY_CAST({extract} AS DOUBLE)"
        return extract
    if isinstance(operand, Literal):
        params.append(operand.value)
        return "?"
    raise ValueError(f"Unknown operand type: {type(operand)}")


def _compile_field_comparison(lhs: FieldRef, op: str, rhs: FieldRef) -> str:
    """Compare two attributes by JSON type: numbers numerically, equal types as text."""
    lptr, rptr = _json_pointer_literal(lhs.name), _json_pointer_literal(rhs.name)
    ltype, rtype = f"json_type(value_json, {lptr})", f"json_type(value_json, {rptr})"
    lnum = f"TRY_CAST(json_extract_string(value_json, {lptr}) AS DOUBLE)"
    rnum = f"TRY_CAST(json_extract_string(value_json, {rptr}) AS DOUBLE)"
    ltext = f"json_extract_string(value_json, {lptr})"
    rtext = f"json_extract_string(value_json, {rptr})"
    sql_op = _SQL_OPS[op]
    # Values of different types are never ordered and are always unequal.
    mixed = "TRUE" if op == "!=" else "FALSE"
    return (
        f"CASE WHEN {ltype} IS NULL OR {rtype} IS NULL THEN NULL "
        f"WHEN {ltype} IN {_NUMERIC_JSON_TYPES} AND {rtype} IN {_NUMERIC_JSON_TYPES} "
        f"THEN {lnum} {sql_op} {rnum} "
        f"WHEN {ltype} = {rtype} THEN {ltext} {sql_op} {rtext} "
        f"ELSE {mixed} END"
    )


def _compile_contains(expr: Comparison, params: list[Any]) -> str:
    """Substring test on string attributes, element membership on list attributes."""
    if not isinstance(expr.lhs, FieldRef):
        lhs = _compile_operand(expr.lhs, None, params)
        rhs = _compile_operand(expr.rhs, None, params)
        return f"contains(CAST({lhs} AS VARCHAR), CAST({rhs} AS VARCHAR))"
    ptr = _json_pointer_literal(expr.lhs.name)
    elements = f"TRY_CAST(json_extract(value_json, {ptr}) AS VARCHAR[])"
    needle = _compile_operand(expr.rhs, None, params)
    in_list = f"list_contains({elements}, CAST({needle} AS VARCHAR))"
    # The needle is bound once per branch.
    needle = _compile_operand(expr.rhs, None, params)
    in_text = f"contains(json_extract_string(value_json, {ptr}), CAST({needle} AS VARCHAR))"
    return (
        f"CASE json_type(value_json, {ptr}) "
        f"WHEN 'ARRAY' THEN {in_list} WHEN 'VARCHAR' THEN {in_text} END"
    )


def _compile_comparison(expr: Comparison, params: list[Any]) -> str:
    if expr.op in ("CONTAINS", "NOT CONTAINS"):
        sql = f"COALESCE({_compile_contains(expr, params)}, FALSE)"
        return f"(NOT {sql})" if expr.op == "NOT CONTAINS" else sql
    if isinstance(expr.lhs, FieldRef) and isinstance(expr.rhs, FieldRef):
        sql = _compile_field_comparison(expr.lhs, expr.op, expr.rhs)
    else:
        lhs = _compile_operand(expr.lhs, expr.rhs, params)
        rhs = _compile_operand(expr.rhs, expr.lhs, params)
        sql = f"{lhs} {_SQL_OPS[expr.op]} {rhs}"
    # A missing attribute never matches a comparison, but NOT of it does.
    return f"COALESCE(({sql}), FALSE)"


def compile_sql_filter(expr: Predicate, params: list[Any]) -> str:
    """Compile a predicate tree into a SQL WHERE clause fragment over ``value_json``."""
    if isinstance(expr, Comparison):
        return _compile_comparison(expr, params)
    if isinstance(expr, Not):
        return f"NOT ({compile_sql_filter(expr.predicate, params)})"
    if isinstance(expr, (And, Or)):
        joiner = " AND " if isinstance(expr, And) else " OR "
        return f"({joiner.join(compile_sql_filter(p, params) for p in expr.predicates)})"
    raise ValueError(f"Unknown predicate type: {type(expr)}")


class DuckDBRepository(PaginatedRepository):
    """Repository over one table of a DuckDB database.

    Records are stored as canonical JSON keyed by their canonical key. Native
    pages hold ``config.page_size`` rows in key order, so continuation behaves
    like a remote store's paginated query. Not thread-safe.
    """

    backend = "duckdb"

    def __init__(
        self,
        db_path: str,
        table: str,
        *,
        key_fields: Sequence[str],
        key_extractor: KeyExtractor | None = None,
        indexes: Mapping[str, Any] | None = None,
        config: RepositoryConfig | None = None,
    ) -> None:
        if not _TABLE_NAME_RE.match(table):
            raise ValueError(f"Invalid table name '{table}': must match [A-Za-z_][A-Za-z0-9_]*")
        if not key_fields:
            raise ValueError("DuckDBRepository requires at least one key field")
        self.key_field_names = tuple(key_fields)
        super().__init__(key_extractor or field_picker(*self.key_field_names), indexes, config)
        self.db_path = db_path
        self.table = table
        self._conn = duckdb.connect(database=db_path)
        self._log = get_logger(__name__, component="duckdb", table=table)
        self._create_table()

    def _create_table(self) -> None:
        self._conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                key_json   VARCHAR PRIMARY KEY,
                value_json VARCHAR NOT NULL
            )
            """
        )

    def close(self) -> None:
        self._conn.close()

    def _key_json(self, key: Key) -> str:
        try:
            return _canonical_json({name: key[name] for name in self.key_field_names})
        except KeyError as e:
            raise ValueError(f"Key is missing key field {e.args[0]!r}") from e

    @contextmanager
    def _store_call(self, operation: str) -> Iterator[None]:
        try:
            yield
        except duckdb.Error as e:
            self._log.error("duckdb_request_failed", operation=operation, error=str(e))
            raise

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        with self._store_call(operation):
            self._conn.execute("BEGIN TRANSACTION")
            try:
                yield
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _read_value(self, key_json: str) -> Record | None:
        row = self._conn.execute(
            f"SELECT value_json FROM {self.table} WHERE key_json = ?", [key_json]
        ).fetchone()
        return json.loads(row[0]) if row is not None else None

    # --- Create & update ---

    def put(self, key: Key, value: Record) -> None:
        item = self._stamp_item(key, value)
        with self._store_call("put"):
            self._conn.execute(
                f"INSERT OR REPLACE INTO {self.table} (key_json, value_json) VALUES (?, ?)",
                [self._key_json(key), _canonical_json(item)],
            )

    def put_many(self, items: Sequence[tuple[Key, Record]]) -> None:
        rows = [
            [self._key_json(key), _canonical_json(self._stamp_item(key, value))]
            for key, value in items
        ]
        for chunk in chunked(rows, self.config.write_batch_size):
            with self._store_call("batch_write"):
                self._conn.executemany(
                    f"INSERT OR REPLACE INTO {self.table} (key_json, value_json) VALUES (?, ?)",
                    chunk,
                )

    # --- Read ---

    def get(self, key: Key) -> Record:
        with self._store_call("get"):
            value = self._read_value(self._key_json(key))
        if value is None:
            raise NotFoundError(key)
        return value

    def get_many(self, keys: Sequence[Key]) -> list[Record]:
        records: list[Record] = []
        for chunk in chunked([self._key_json(k) for k in keys], self.config.read_batch_size):
            placeholders = ", ".join("?" for _ in chunk)
            with self._store_call("batch_get"):
                rows = self._conn.execute(
                    f"SELECT value_json FROM {self.table} WHERE key_json IN ({placeholders})",
                    chunk,
                ).fetchall()
            records.extend(json.loads(row[0]) for row in rows)
        return records

    # --- Delete ---

    def delete(self, key: Key) -> None:
        key_json = self._key_json(key)
        with self._transaction("delete"):
            if self._read_value(key_json) is None:
                raise NotFoundError(key)
            self._conn.execute(f"DELETE FROM {self.table} WHERE key_json = ?", [key_json])

    def delete_many(self, keys: Sequence[Key]) -> None:
        rows = [[self._key_json(k)] for k in keys]
        for chunk in chunked(rows, self.config.write_batch_size):
            with self._store_call("batch_delete"):
                self._conn.executemany(f"DELETE FROM {self.table} WHERE key_json = ?", chunk)

    # --- Partial update ---

    def _apply_update(self, key: Key, fields: Mapping[str, Any]) -> None:
        key_json = self._key_json(key)
        current = self._read_value(key_json)
        if current is None:
            raise NotFoundError(key)
        current.update(self._stamp_update(key, fields))
        self._conn.execute(
            f"UPDATE {self.table} SET value_json = ? WHERE key_json = ?",
            [_canonical_json(current), key_json],
        )

    def partial_update(self, key: Key, fields: Mapping[str, Any]) -> None:
        with self._transaction("partial_update"):
            self._apply_update(key, fields)

    def partial_update_many(self, items: Sequence[tuple[Key, Mapping[str, Any]]]) -> None:
        """Apply updates in one transaction per chunk; a missing record rolls back its chunk."""
        for chunk in chunked(list(items), self.config.transaction_batch_size):
            with self._transaction("transact_update"):
                for key, fields in chunk:
                    self._apply_update(key, fields)

    # --- Query ---

    def _fetch_page(self, plan: QueryPlan, start_key: Key | None) -> NativePage:
        params: list[Any] = []
        clauses: list[str] = []

        predicate = plan.filter
        if plan.mode != "scan":
            assert plan.partition_field is not None
            on_partition = Comparison(FieldRef(plan.partition_field), "=", Literal(plan.partition))
            predicate = on_partition if predicate is None else And((on_partition, predicate))
        if predicate is not None:
            clauses.append(compile_sql_filter(predicate, params))
        if start_key:
            clauses.append("key_json > ?")
            params.append(self._key_json(start_key))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        page_size = self.config.page_size
        sql = (
            f"SELECT value_json FROM {self.table} {where} "
            f"ORDER BY key_json LIMIT {page_size + 1}"
        )
        with self._store_call("scan" if plan.mode == "scan" else "query"):
            rows = self._conn.execute(sql, params).fetchall()

        records = [json.loads(row[0]) for row in rows[:page_size]]
        last_key = self._cursor_for(records[-1], plan) if len(rows) > page_size else None
        return NativePage(records=records, last_evaluated_key=last_key)
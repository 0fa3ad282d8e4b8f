"""pricevault query: paginated reads with routing, filters and continuation."""

from __future__ import annotations

import json
from typing import Any, Optional

import typer

from pricevault.cli import _exitcodes as ec
from pricevault.cli._filters import combine, parse_filter_args, parse_where
from pricevault.cli._output import print_error, print_records
from pricevault.cli._storage import open_repo
from pricevault.errors import InvalidPredicateError, UnknownIndexError
from pricevault.repository import PrimaryKey, QueryTarget, SecondaryIndex


def _parse_json_option(raw: str | None, option: str) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        print_error(f"{option} is not valid JSON: {e}")
        raise typer.Exit(ec.USAGE_ERROR)


def query_cmd(
    index: Optional[str] = typer.Option(None, "--index", help="Registered secondary index name"),
    partition_field: Optional[str] = typer.Option(
        None, "--partition-field", help="Primary partition attribute"
    ),
    partition: Optional[str] = typer.Option(None, "--partition", help="Partition value as JSON"),
    filter_args: Optional[list[str]] = typer.Option(
        None, "--filter", help="FIELD OP VALUE_JSON (repeatable)"
    ),
    where: Optional[str] = typer.Option(None, "--where", help="Predicate tree as JSON"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Max results"),
    start_key: Optional[str] = typer.Option(
        None, "--start-key", help="Continuation cursor from a previous query, as JSON"
    ),
) -> None:
    """Query records by partition, or scan them, with optional filters."""
    from pricevault.cli import state

    json_mode = state.json_output

    if index and partition_field:
        print_error("Use either --index or --partition-field, not both")
        raise typer.Exit(ec.USAGE_ERROR)
    if limit is not None and limit <= 0:
        print_error("--limit must be positive")
        raise typer.Exit(ec.USAGE_ERROR)

    target: QueryTarget | None = None
    if index:
        target = SecondaryIndex(index)
    elif partition_field:
        target = PrimaryKey(partition_field)

    partition_value = _parse_json_option(partition, "--partition")
    if partition_value is not None and target is None:
        print_error("--partition requires --index or --partition-field")
        raise typer.Exit(ec.USAGE_ERROR)
    cursor = _parse_json_option(start_key, "--start-key")

    try:
        predicate = combine(parse_filter_args(filter_args), parse_where(where))
    except (ValueError, InvalidPredicateError) as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        repo = open_repo()
    except Exception as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        result = repo.query(
            target=target,
            partition=partition_value,
            start_key=cursor,
            limit=limit,
            filter=predicate,
        )
        if json_mode:
            data = {
                "items": result.values,
                "last_evaluated_key": result.last_evaluated_key,
            }
            print(json.dumps(data, indent=2, default=str))
        else:
            print_records(result.values)
            print(f"\n{len(result.items)} record(s)")
            if result.last_evaluated_key is not None:
                next_key = json.dumps(result.last_evaluated_key, default=str)
                print(f"More results: --start-key '{next_key}'")
    except UnknownIndexError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()

"""pricevault export: dump every record as JSONL or Parquet."""

from __future__ import annotations

import json
import os
from typing import Any, Iterator

import pyarrow as pa
import pyarrow.parquet as pq
import typer

from pricevault.cli import _exitcodes as ec
from pricevault.cli._output import print_error
from pricevault.cli._storage import open_repo
from pricevault.repository import PaginatedRepository, Record


def iter_all_records(repo: PaginatedRepository, page_limit: int = 1000) -> Iterator[list[Record]]:
    """Scan the whole table, yielding one logical page at a time."""
    cursor: dict[str, Any] | None = None
    while True:
        result = repo.query(start_key=cursor, limit=page_limit)
        if result.items:
            yield result.values
        cursor = result.last_evaluated_key
        if cursor is None:
            return


def _to_arrow(rows: list[Record]) -> pa.Table:
    """Build an Arrow table whose columns are the union of the records' attributes."""
    columns: list[str] = []
    for row in rows:
        for name in row:
            if name not in columns:
                columns.append(name)
    return pa.Table.from_pydict({name: [row.get(name) for row in rows] for name in columns})


def export_cmd(
    output: str = typer.Option(..., "--output", help="Output file path"),
    fmt: str = typer.Option("jsonl", "--format", help="Output format: jsonl|parquet"),
) -> None:
    """Export every record of the table."""
    if fmt not in ("jsonl", "parquet"):
        print_error("--format must be 'jsonl' or 'parquet'")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        repo = open_repo()
    except Exception as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        parent = os.path.dirname(output)
        if parent:
            os.makedirs(parent, exist_ok=True)

        total_rows = 0
        if fmt == "jsonl":
            with open(output, "w") as f:
                for batch in iter_all_records(repo):
                    for record in batch:
                        f.write(json.dumps(record, default=str) + "\n")
                    total_rows += len(batch)
        else:
            rows: list[Record] = []
            for batch in iter_all_records(repo):
                rows.extend(batch)
            total_rows = len(rows)
            pq.write_table(_to_arrow(rows), output)

        print(f"Exported {total_rows} records to {output}")
    except typer.Exit:
        raise
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()

"""pricevault import: bulk load records from a JSONL file."""

from __future__ import annotations

import json
from typing import Any

import typer

from pricevault.cli import _exitcodes as ec
from pricevault.cli._output import print_error, print_object
from pricevault.cli._storage import open_repo


def _load_jsonl(path: str) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    with open(path) as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            record = json.loads(line)
            if not isinstance(record, dict):
                raise ValueError(f"line {lineno}: expected a JSON object")
            records.append(record)
    return records


def import_cmd(
    input_path: str = typer.Argument(..., help="JSONL file, one record per line"),
) -> None:
    """Write every record of a JSONL file with batched puts."""
    from pricevault.cli import state

    try:
        records = _load_jsonl(input_path)
    except (OSError, ValueError) as e:
        print_error(f"Cannot read {input_path}: {e}")
        raise typer.Exit(ec.USAGE_ERROR)
    if not records:
        print("No records to import.")
        return

    try:
        repo = open_repo()
    except Exception as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        try:
            items = [(repo.key_extractor(record), record) for record in records]
        except ValueError as e:
            print_error(str(e))
            raise typer.Exit(ec.USAGE_ERROR)
        repo.put_many(items)
        print_object({"imported": len(items)}, json_mode=state.json_output)
    except typer.Exit:
        raise
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()

"""pricevault get/put/delete/update: single-record operations."""

from __future__ import annotations

import json
from typing import Any, Optional

import typer

from pricevault.cli import _exitcodes as ec
from pricevault.cli._output import print_error, print_object
from pricevault.cli._storage import open_repo
from pricevault.errors import NotFoundError
from pricevault.idgen import IdGenerator


def _load_object(raw: str, what: str) -> dict[str, Any]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        print_error(f"{what} is not valid JSON: {e}")
        raise typer.Exit(ec.USAGE_ERROR)
    if not isinstance(value, dict):
        print_error(f"{what} must be a JSON object")
        raise typer.Exit(ec.USAGE_ERROR)
    return value


def _open() -> Any:
    try:
        return open_repo()
    except Exception as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)


def get_cmd(
    key_json: str = typer.Argument(..., help='Record key as JSON, e.g. {"id": "a1"}'),
) -> None:
    """Fetch one record by key."""
    from pricevault.cli import state

    key = _load_object(key_json, "KEY_JSON")
    repo = _open()
    try:
        record = repo.get(key)
        print_object(record, json_mode=state.json_output)
    except NotFoundError as e:
        print_error(str(e))
        raise typer.Exit(ec.NOT_FOUND)
    except typer.Exit:
        raise
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()


def put_cmd(
    value_json: str = typer.Argument(..., help="Record as a JSON object"),
    generate_id: Optional[str] = typer.Option(
        None, "--generate-id", help="Fill this attribute with a generated identifier"
    ),
) -> None:
    """Create or replace a record; its key is read from the record's key fields."""
    from pricevault.cli import state

    value = _load_object(value_json, "VALUE_JSON")
    if generate_id:
        value[generate_id] = IdGenerator.create().generate_hex()

    repo = _open()
    try:
        try:
            key = repo.key_extractor(value)
        except ValueError as e:
            print_error(str(e))
            raise typer.Exit(ec.USAGE_ERROR)
        repo.put(key, value)
        if state.json_output:
            print_object({"key": key}, json_mode=True)
        else:
            print(f"Stored {json.dumps(key, default=str)}")
    except typer.Exit:
        raise
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()


def delete_cmd(
    key_json: str = typer.Argument(..., help="Record key as JSON"),
) -> None:
    """Delete one record by key; fails when it does not exist."""
    key = _load_object(key_json, "KEY_JSON")
    repo = _open()
    try:
        repo.delete(key)
        print(f"Deleted {json.dumps(key, default=str)}")
    except NotFoundError as e:
        print_error(str(e))
        raise typer.Exit(ec.NOT_FOUND)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()


def update_cmd(
    key_json: str = typer.Argument(..., help="Record key as JSON"),
    fields_json: str = typer.Argument(..., help="Attributes to set, as a JSON object"),
) -> None:
    """Set some attributes of an existing record."""
    key = _load_object(key_json, "KEY_JSON")
    fields = _load_object(fields_json, "FIELDS_JSON")
    repo = _open()
    try:
        repo.partial_update(key, fields)
        print(f"Updated {json.dumps(key, default=str)}")
    except NotFoundError as e:
        print_error(str(e))
        raise typer.Exit(ec.NOT_FOUND)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        repo.close()

"""pricevault CLI: operator console for records held in a pricevault repository."""

from __future__ import annotations

from typing import Optional

import typer

from pricevault.cli import export_cmd, import_cmd, query, records

app = typer.Typer(
    name="pricevault",
    help="pricevault CLI: read, write and query records in DynamoDB or a local DuckDB file.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    storage_uri: str = "duckdb:///pricevault.db?table=records"
    key_fields: str = "id"
    indexes: list[str] = []
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        from pricevault import __version__

        print(f"pricevault {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    storage_uri: Optional[str] = typer.Option(
        None,
        "--storage-uri",
        envvar="PRICEVAULT_STORAGE_URI",
        help="Backend storage URI (e.g. dynamodb://prices or duckdb:///prices.db?table=prices)",
    ),
    key_fields: Optional[str] = typer.Option(
        None,
        "--key-fields",
        envvar="PRICEVAULT_KEY_FIELDS",
        help="Comma separated key attribute names (default: id)",
    ),
    index: Optional[list[str]] = typer.Option(
        None, "--index", help="Secondary index as NAME=PARTITION[:RANGE] (repeatable)"
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    log_level: str = typer.Option(
        "WARNING", "--log-level", envvar="PRICEVAULT_LOG_LEVEL", help="Log level for stderr logs"
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all pricevault commands."""
    from pricevault.cli._storage import parse_index_options, parse_key_fields
    from pricevault.observability import setup_logging
    from pricevault.repository import parse_storage_target

    resolved_uri = storage_uri or _State.storage_uri
    resolved_keys = key_fields or _State.key_fields
    try:
        parse_storage_target(resolved_uri)
    except Exception as e:
        raise typer.BadParameter(str(e))
    try:
        parse_key_fields(resolved_keys)
        parse_index_options(index)
    except ValueError as e:
        raise typer.BadParameter(str(e))

    setup_logging(log_level, json_logs=False)

    state.storage_uri = resolved_uri
    state.key_fields = resolved_keys
    state.indexes = list(index or [])
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


# Register top-level commands
app.command(name="get")(records.get_cmd)
app.command(name="put")(records.put_cmd)
app.command(name="delete")(records.delete_cmd)
app.command(name="update")(records.update_cmd)
app.command(name="query")(query.query_cmd)
app.command(name="export")(export_cmd.export_cmd)
app.command(name="import")(import_cmd.import_cmd)


def main() -> None:
    """Entry point for the pricevault CLI."""
    app()

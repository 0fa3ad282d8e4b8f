"""CLI helpers for backend-aware repository construction."""

from __future__ import annotations

import os

from pricevault.config import RepositoryConfig
from pricevault.repository import IndexSpec, PaginatedRepository, open_repository


def config_from_env() -> RepositoryConfig:
    """Build repository config from CLI environment defaults."""
    config = RepositoryConfig(
        region=os.getenv("PRICEVAULT_DYNAMODB_REGION") or os.getenv("AWS_REGION"),
        endpoint_url=os.getenv("PRICEVAULT_DYNAMODB_ENDPOINT_URL"),
    )
    page_size = os.getenv("PRICEVAULT_PAGE_SIZE")
    if page_size:
        config.page_size = int(page_size)
    return config


def parse_key_fields(raw: str) -> list[str]:
    """Parse a comma separated list of key attribute names."""
    names = [name.strip() for name in raw.split(",") if name.strip()]
    if not names:
        raise ValueError("At least one key field is required")
    return names


def parse_index_options(raw: list[str] | None) -> dict[str, IndexSpec]:
    """Parse ``NAME=PARTITION[:RANGE]`` index definitions."""
    indexes: dict[str, IndexSpec] = {}
    for entry in raw or []:
        name, sep, keys = entry.partition("=")
        if not sep or not name or not keys:
            raise ValueError(f"Invalid index definition (expected NAME=PARTITION[:RANGE]): {entry}")
        partition_key, _, range_key = keys.partition(":")
        indexes[name] = IndexSpec(partition_key, range_key or None)
    return indexes


def open_repo() -> PaginatedRepository:
    """Open the repository selected by the global CLI options."""
    from pricevault.cli import state

    return open_repository(
        state.storage_uri,
        key_field_names=parse_key_fields(state.key_fields),
        indexes=parse_index_options(state.indexes),
        config=config_from_env(),
    )

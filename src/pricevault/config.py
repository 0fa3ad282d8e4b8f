"""Configuration for pricevault repositories."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RepositoryConfig:
    """Configuration shared by the repository adapters."""

    region: str | None = None
    endpoint_url: str | None = None
    request_timeout_s: float = 10.0
    max_attempts: int = 5
    write_batch_size: int = 25
    read_batch_size: int = 100
    transaction_batch_size: int = 25
    max_workers: int | None = None
    created_at_attr: str = "createdAt"
    updated_at_attr: str = "updatedAt"
    page_size: int = 100

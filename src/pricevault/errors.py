"""Structured error types for pricevault."""

from __future__ import annotations

from typing import Any


class PriceVaultError(Exception):
    """Base error for all pricevault errors."""


class NotFoundError(PriceVaultError):
    """Raised when a record addressed by key does not exist in the store."""

    def __init__(self, key: dict[str, Any]) -> None:
        self.key = key
        super().__init__(f"Resource does not exist: {key}")


class UnknownIndexError(PriceVaultError):
    """Raised when a query names a secondary index that was never registered."""

    def __init__(self, name: str, registered: list[str]) -> None:
        self.name = name
        self.registered = registered
        super().__init__(
            f"Secondary index '{name}' is not registered. Registered indexes: {registered}"
        )


class InvalidPredicateError(PriceVaultError, ValueError):
    """Raised when a predicate (or its wire form) is malformed."""


class StorageBackendError(PriceVaultError):
    """Raised when a storage target cannot be resolved or opened."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")

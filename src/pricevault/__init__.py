"""pricevault: storage-agnostic key-value repository with a structured query language."""

__version__ = "0.1.0"

from pricevault.config import RepositoryConfig
from pricevault.errors import (
    InvalidPredicateError,
    NotFoundError,
    PriceVaultError,
    StorageBackendError,
    UnknownIndexError,
)
from pricevault.expressions import CompiledExpression, compile_predicate
from pricevault.filters import (
    And,
    Comparison,
    FieldRef,
    Literal,
    Not,
    Or,
    Predicate,
    field,
    predicate_from_dict,
    predicate_to_dict,
)
from pricevault.idgen import IdGenerator
from pricevault.repository import (
    IndexSpec,
    Item,
    PrimaryKey,
    QueryResult,
    Repository,
    SecondaryIndex,
    key_fields,
    open_repository,
)

__all__ = [
    "__version__",
    "RepositoryConfig",
    "PriceVaultError",
    "NotFoundError",
    "UnknownIndexError",
    "InvalidPredicateError",
    "StorageBackendError",
    "Comparison",
    "And",
    "Or",
    "Not",
    "FieldRef",
    "Literal",
    "Predicate",
    "field",
    "predicate_from_dict",
    "predicate_to_dict",
    "CompiledExpression",
    "compile_predicate",
    "IdGenerator",
    "IndexSpec",
    "Item",
    "PrimaryKey",
    "SecondaryIndex",
    "QueryResult",
    "Repository",
    "key_fields",
    "open_repository",
]

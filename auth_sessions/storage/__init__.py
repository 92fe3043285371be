# Storage Layer
# Pluggable document persistence for the session service
#
# This module provides:
# - Port interface (ABC) defining the document-store contract
# - In-memory implementation for development/testing
# - SQLAlchemy implementation for production persistence
# - Redis implementation for shared multi-node state
# - Factory for configuration-based adapter selection

from .ports import (
    DocumentStore,
    Document,
    Matcher,
    Projection,
    StorageBundle,
    StorageError,
    ConflictError,
)
from .memory import InMemoryDocumentStore
from .factory import (
    StorageSettings,
    StorageBackend,
    create_storage,
    create_storage_from_env,
    create_sqlite_storage,
    settings_from_env,
)

__all__ = [
    # Ports
    "DocumentStore",
    "Document",
    "Matcher",
    "Projection",
    "StorageBundle",
    "StorageError",
    "ConflictError",
    # Adapters
    "InMemoryDocumentStore",
    # Factory
    "StorageSettings",
    "StorageBackend",
    "create_storage",
    "create_storage_from_env",
    "create_sqlite_storage",
    "settings_from_env",
]

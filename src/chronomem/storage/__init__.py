"""Storage layer for chronomem.

This module provides the credit ledger database, object storage access,
the graph fact store and vector table reads.
"""

from chronomem.storage.graph import FactStore, snapshot_key
from chronomem.storage.object_store import ObjectStore
from chronomem.storage.sqlite import SQLiteStorage
from chronomem.storage.vector import ConnectionCache, VectorReadClient

__all__ = [
    "SQLiteStorage",
    "ObjectStore",
    "FactStore",
    "snapshot_key",
    "ConnectionCache",
    "VectorReadClient",
]

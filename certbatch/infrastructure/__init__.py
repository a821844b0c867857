"""
Infrastructure package for certbatch.

Centralizes storage concerns: the in-memory stores used by default and in
tests, and the PostgreSQL stores with their connection pool. Keep this layer
focused on I/O and resource management, decoupled from orchestration logic.
"""

from certbatch.infrastructure.db_factory import (
    PoolManager,
    build_dsn,
    get_sync_connection,
    get_sync_pool,
)
from certbatch.infrastructure.memory_store import InMemoryCertificateStore, InMemoryQuotaStore

__all__ = [
    "InMemoryCertificateStore",
    "InMemoryQuotaStore",
    "PoolManager",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
]

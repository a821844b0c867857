"""
Database connection factory utilities for certbatch.

Provides centralized management of the PostgreSQL connection pool backing the
quota counters and certificate records. The PoolManager singleton ensures the
pool is cleaned up on application exit.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import atexit
import threading
from typing import Any, Dict, Optional

import psycopg
from psycopg import Connection
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from certbatch.config import Settings, get_settings

_TRANSIENT_ERRORS = (psycopg.OperationalError, psycopg.InterfaceError)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def connection_kwargs(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Session options applied to every connection (server-side statement timeout)."""
    settings = settings or get_settings()
    return {"options": f"-c statement_timeout={settings.db_statement_timeout_ms}"}


class PoolManager:
    """
    Thread-safe singleton for managing the database connection pool.

    Handles lifecycle management with automatic cleanup via atexit hook.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._sync_pool: Optional[ConnectionPool] = None
                atexit.register(cls._instance.close_all)
            return cls._instance

    def get_sync_pool(
        self,
        settings: Optional[Settings] = None,
        min_size: int = 1,
        max_size: int = 10,
    ) -> ConnectionPool:
        """
        Get or create the synchronous connection pool.

        Parameters
        ----------
        settings : Settings, optional
            Source of connection parameters; defaults to `get_settings()`.
        min_size : int
            Minimum number of idle connections to keep.
        max_size : int
            Maximum total connections in the pool.

        Returns
        -------
        ConnectionPool
            The managed sync pool instance.
        """
        with self._lock:
            if self._sync_pool is None:
                self._sync_pool = ConnectionPool(
                    conninfo=build_dsn(settings),
                    min_size=min_size,
                    max_size=max_size,
                    kwargs=connection_kwargs(settings),
                    open=True,
                )
            return self._sync_pool

    def close_all(self) -> None:
        """
        Close the managed pool and release resources.

        This is called automatically on exit via atexit hook.
        """
        with self._lock:
            if self._sync_pool is not None:
                try:
                    self._sync_pool.close()
                finally:
                    self._sync_pool = None


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(_TRANSIENT_ERRORS),
    reraise=True,
)
def get_sync_connection(settings: Optional[Settings] = None) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.
    Used for schema setup and one-off maintenance; stores use the pool.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(build_dsn(settings), **connection_kwargs(settings))


def get_sync_pool(
    settings: Optional[Settings] = None, min_size: int = 1, max_size: int = 10
) -> ConnectionPool:
    """Get or create the synchronous connection pool via PoolManager."""
    return PoolManager().get_sync_pool(settings, min_size=min_size, max_size=max_size)


__all__ = [
    "PoolManager",
    "build_dsn",
    "connection_kwargs",
    "get_sync_connection",
    "get_sync_pool",
]

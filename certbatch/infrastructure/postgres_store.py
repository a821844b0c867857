"""
PostgreSQL-backed quota counters and certificate records.

The increment-with-ceiling primitive is a single upsert whose conflict branch
only fires while the ceiling holds, so the database row lock serializes
concurrent senders on the same key without a separate read.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from certbatch.config import Settings
from certbatch.domain.errors import StoreError
from certbatch.domain.models import CertificateRecord, EmailStatus
from certbatch.domain.ports import CounterResult
from certbatch.infrastructure.db_factory import get_sync_connection, get_sync_pool
from certbatch.utils.logging import get_logger

log = get_logger(__name__)

SCHEMA_PATH = Path(__file__).resolve().with_name("schema.sql")

_INCREMENT_WITH_CEILING = """
INSERT INTO public.quota_counters AS c (key, count)
SELECT %(key)s, %(amount)s::bigint
WHERE %(amount)s::bigint <= %(ceiling)s::bigint
ON CONFLICT (key) DO UPDATE
    SET count = c.count + EXCLUDED.count, updated_at = now()
    WHERE c.count + EXCLUDED.count <= %(ceiling)s::bigint
RETURNING c.count;
"""

_INCREMENT_UNBOUNDED = """
INSERT INTO public.quota_counters AS c (key, count)
VALUES (%(key)s, %(amount)s::bigint)
ON CONFLICT (key) DO UPDATE
    SET count = c.count + EXCLUDED.count, updated_at = now()
RETURNING c.count;
"""

# Negative amounts only update an existing counter, clamped at zero.
_RELEASE = """
UPDATE public.quota_counters
    SET count = GREATEST(count + %(amount)s::bigint, 0), updated_at = now()
    WHERE key = %(key)s
RETURNING count;
"""

_CERTIFICATE_COLUMNS = (
    "id",
    "template_id",
    "user_id",
    "recipient_name",
    "recipient_email",
    "title",
    "description",
    "issuer_name",
    "issued_at",
    "metadata",
    "is_active",
    "view_count",
    "email_status",
    "email_error",
    "email_sent_at",
)


def apply_schema(settings: Optional[Settings] = None, schema_path: Path = SCHEMA_PATH) -> None:
    """Create tables if missing, using a dedicated connection."""
    sql = schema_path.read_text(encoding="utf-8")
    with get_sync_connection(settings) as conn:
        with conn.cursor() as cur:
            cur.execute(sql)
        conn.commit()
    log.info("[SCHEMA] applied", extra={"path": str(schema_path)})


class PostgresQuotaStore:
    def __init__(self, pool: Optional[ConnectionPool] = None, settings: Optional[Settings] = None):
        self._pool = pool or get_sync_pool(settings)

    def increment_with_ceiling(
        self, key: str, amount: int = 1, ceiling: Optional[int] = None
    ) -> CounterResult:
        params = {"key": key, "amount": amount, "ceiling": ceiling}
        if amount < 0:
            sql = _RELEASE
        elif ceiling is None:
            sql = _INCREMENT_UNBOUNDED
        else:
            sql = _INCREMENT_WITH_CEILING
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    row = cur.fetchone()
                    if row is not None:
                        return CounterResult(admitted=True, count=int(row[0]))
                    if amount < 0:
                        return CounterResult(admitted=True, count=0)
                    cur.execute(
                        "SELECT count FROM public.quota_counters WHERE key = %s;", (key,)
                    )
                    current = cur.fetchone()
                    return CounterResult(admitted=False, count=int(current[0]) if current else 0)
        except psycopg.Error as exc:
            raise StoreError(f"Counter update failed for {key}: {exc}") from exc

    def get_count(self, key: str) -> int:
        try:
            with self._pool.connection() as conn:
                row = conn.execute(
                    "SELECT count FROM public.quota_counters WHERE key = %s;", (key,)
                ).fetchone()
        except psycopg.Error as exc:
            raise StoreError(f"Counter read failed for {key}: {exc}") from exc
        return int(row[0]) if row else 0

    def is_premium(self, user_id: str) -> bool:
        try:
            with self._pool.connection() as conn:
                row = conn.execute(
                    "SELECT is_premium FROM public.user_profiles WHERE user_id = %s;", (user_id,)
                ).fetchone()
        except psycopg.Error as exc:
            raise StoreError(f"Profile read failed for {user_id}: {exc}") from exc
        return bool(row[0]) if row else False

    def set_premium(self, user_id: str, is_premium: bool) -> None:
        try:
            with self._pool.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO public.user_profiles (user_id, is_premium)
                    VALUES (%s, %s)
                    ON CONFLICT (user_id) DO UPDATE
                        SET is_premium = EXCLUDED.is_premium, updated_at = now();
                    """,
                    (user_id, is_premium),
                )
        except psycopg.Error as exc:
            raise StoreError(f"Profile update failed for {user_id}: {exc}") from exc


class PostgresCertificateStore:
    def __init__(self, pool: Optional[ConnectionPool] = None, settings: Optional[Settings] = None):
        self._pool = pool or get_sync_pool(settings)

    def save_many(self, records: Iterable[CertificateRecord]) -> int:
        rows: List[tuple] = []
        for record in records:
            data = record.model_dump()
            data["metadata"] = Jsonb(data["metadata"])
            status = data["email_status"]
            data["email_status"] = status.value if status is not None else None
            rows.append(tuple(data[col] for col in _CERTIFICATE_COLUMNS))
        if not rows:
            return 0

        placeholders = ", ".join(["%s"] * len(_CERTIFICATE_COLUMNS))
        sql = (
            f"INSERT INTO public.certificates ({', '.join(_CERTIFICATE_COLUMNS)}) "
            f"VALUES ({placeholders}) ON CONFLICT (id) DO NOTHING;"
        )
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.executemany(sql, rows)
        except psycopg.Error as exc:
            raise StoreError(f"Certificate insert failed: {exc}") from exc
        return len(rows)

    def get(self, certificate_id: str) -> Optional[CertificateRecord]:
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        f"SELECT {', '.join(_CERTIFICATE_COLUMNS)} "
                        "FROM public.certificates WHERE id = %s;",
                        (certificate_id,),
                    )
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise StoreError(f"Certificate lookup failed for {certificate_id}: {exc}") from exc
        return CertificateRecord.model_validate(row) if row else None

    def update_delivery_status(
        self, certificate_id: str, status: EmailStatus, error: Optional[str] = None
    ) -> bool:
        try:
            with self._pool.connection() as conn:
                cur = conn.execute(
                    """
                    UPDATE public.certificates
                    SET email_status = %s,
                        email_error = %s,
                        email_sent_at = CASE WHEN %s = 'sent' THEN now() ELSE email_sent_at END
                    WHERE id = %s;
                    """,
                    (status.value, error, status.value, certificate_id),
                )
                return cur.rowcount > 0
        except psycopg.Error as exc:
            raise StoreError(f"Delivery status update failed for {certificate_id}: {exc}") from exc


__all__ = ["PostgresCertificateStore", "PostgresQuotaStore", "SCHEMA_PATH", "apply_schema"]

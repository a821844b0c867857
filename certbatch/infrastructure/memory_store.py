"""
In-process stores for quota counters and certificate records.

Used by the CLI's default `memory` backend and throughout the unit tests.
Counter updates are serialized per key so concurrent callers on the same
(user, day) can never both slip past a ceiling.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Set

from certbatch.domain.models import CertificateRecord, EmailStatus
from certbatch.domain.ports import CounterResult


class InMemoryQuotaStore:
    def __init__(self, premium_users: Optional[Iterable[str]] = None) -> None:
        self._counts: Dict[str, int] = {}
        self._key_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._guard = threading.Lock()
        self._premium: Set[str] = set(premium_users or ())

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._key_locks[key]

    def increment_with_ceiling(
        self, key: str, amount: int = 1, ceiling: Optional[int] = None
    ) -> CounterResult:
        with self._lock_for(key):
            current = self._counts.get(key, 0)
            proposed = max(current + amount, 0)
            if ceiling is not None and proposed > ceiling:
                return CounterResult(admitted=False, count=current)
            self._counts[key] = proposed
            return CounterResult(admitted=True, count=proposed)

    def get_count(self, key: str) -> int:
        with self._lock_for(key):
            return self._counts.get(key, 0)

    def set_count(self, key: str, value: int) -> None:
        """Seed a counter (tests and CLI fixtures)."""
        with self._lock_for(key):
            self._counts[key] = value

    def is_premium(self, user_id: str) -> bool:
        with self._guard:
            return user_id in self._premium

    def set_premium(self, user_id: str, is_premium: bool) -> None:
        with self._guard:
            if is_premium:
                self._premium.add(user_id)
            else:
                self._premium.discard(user_id)


class InMemoryCertificateStore:
    def __init__(self) -> None:
        self._records: Dict[str, CertificateRecord] = {}
        self._lock = threading.Lock()

    def save_many(self, records: Iterable[CertificateRecord]) -> int:
        saved = 0
        with self._lock:
            for record in records:
                self._records[record.id] = record.model_copy(deep=True)
                saved += 1
        return saved

    def get(self, certificate_id: str) -> Optional[CertificateRecord]:
        with self._lock:
            record = self._records.get(certificate_id)
            return record.model_copy(deep=True) if record else None

    def update_delivery_status(
        self, certificate_id: str, status: EmailStatus, error: Optional[str] = None
    ) -> bool:
        with self._lock:
            record = self._records.get(certificate_id)
            if record is None:
                return False
            record.email_status = status
            record.email_error = error
            if status is EmailStatus.SENT:
                record.email_sent_at = datetime.now(timezone.utc)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


__all__ = ["InMemoryCertificateStore", "InMemoryQuotaStore"]

"""
Storage interfaces used by the quota gate, the orchestrator and the email
service.

Concrete implementations live in `certbatch.infrastructure` (in-memory and
PostgreSQL). Both must make `increment_with_ceiling` atomic per key: the gate
never reads a counter and writes it back in two steps.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, runtime_checkable

from certbatch.domain.models import CertificateRecord, EmailStatus


@dataclass(frozen=True)
class CounterResult:
    """Outcome of an increment-with-ceiling call."""

    admitted: bool
    count: int


@runtime_checkable
class QuotaStore(Protocol):
    """
    Keyed counters plus the premium flag of each user.

    Methods
    -------
    increment_with_ceiling(key, amount, ceiling)
        Atomically add `amount` to the counter at `key` unless the result would
        exceed `ceiling` (no ceiling when None). A missing counter starts at 0.
        Returns the post-increment count when admitted and the unchanged count
        when rejected. A negative `amount` gives back a previously admitted
        reservation; the count never drops below 0.
    get_count(key)
        Current value, 0 when the counter does not exist.
    """

    def increment_with_ceiling(
        self, key: str, amount: int = 1, ceiling: Optional[int] = None
    ) -> CounterResult:
        ...

    def get_count(self, key: str) -> int:
        ...

    def is_premium(self, user_id: str) -> bool:
        ...

    def set_premium(self, user_id: str, is_premium: bool) -> None:
        ...


@runtime_checkable
class CertificateStore(Protocol):
    """Persistence for issued certificate metadata."""

    def save_many(self, records: Iterable[CertificateRecord]) -> int:
        ...

    def get(self, certificate_id: str) -> Optional[CertificateRecord]:
        ...

    def update_delivery_status(
        self, certificate_id: str, status: EmailStatus, error: Optional[str] = None
    ) -> bool:
        ...


__all__ = ["CertificateStore", "CounterResult", "QuotaStore"]

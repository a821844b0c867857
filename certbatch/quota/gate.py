"""
Quota gate: free-tier generation cap and per-day send cap.

The gate returns decision values rather than raising, so the orchestrator can
turn a rejected batch into a structured "upgrade required" result and the
dispatcher can record a rate-limited recipient and move on.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional

from certbatch.config import Settings
from certbatch.domain.errors import (
    RATE_LIMIT_EXCEEDED,
    UPGRADE_REQUIRED,
    UpgradeRequiredError,
)
from certbatch.domain.models import QuotaState
from certbatch.domain.ports import QuotaStore
from certbatch.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class QuotaSnapshot:
    # Limit and usage for one counter; limit None means unlimited.
    limit: int | None
    used: int
    remaining: int | None


@dataclass(frozen=True)
class GenerationDecision:
    # `reserved` units were added to the counter up front; settle_generation
    # gives back whatever the batch did not produce.
    allowed: bool
    is_premium: bool
    snapshot: QuotaSnapshot
    code: Optional[str] = None
    reserved: int = 0

    @property
    def remaining(self) -> int | None:
        return self.snapshot.remaining


@dataclass(frozen=True)
class SendDecision:
    allowed: bool
    snapshot: QuotaSnapshot
    code: Optional[str] = None

    @property
    def remaining(self) -> int | None:
        return self.snapshot.remaining


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot(limit: int | None, used: int) -> QuotaSnapshot:
    if limit is None:
        return QuotaSnapshot(limit=None, used=used, remaining=None)
    return QuotaSnapshot(limit=limit, used=used, remaining=max(limit - used, 0))


def generation_key(user_id: str) -> str:
    return f"generations_{user_id}"


def daily_send_key(user_id: str, day: date) -> str:
    return f"email_{user_id}_{day.isoformat()}"


class QuotaGate:
    """
    Enforces generation and send quotas on top of a `QuotaStore`.

    Parameters
    ----------
    store : QuotaStore
        Counter store offering an atomic increment-with-ceiling.
    free_generation_limit : int
        Lifetime generation cap for non-premium users.
    daily_email_limit, premium_daily_email_limit : int
        Per-day send caps by tier.
    free_bulk_email_limit : int
        Largest bulk send a non-premium user may queue.
    time_provider : callable, optional
        Returns the current UTC datetime; injected for day-rollover tests.
    """

    def __init__(
        self,
        store: QuotaStore,
        *,
        free_generation_limit: int = 5,
        daily_email_limit: int = 100,
        premium_daily_email_limit: int = 300,
        free_bulk_email_limit: int = 5,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.free_generation_limit = free_generation_limit
        self.daily_email_limit = daily_email_limit
        self.premium_daily_email_limit = premium_daily_email_limit
        self.free_bulk_email_limit = free_bulk_email_limit
        self._time_provider = time_provider or _utc_now

    @classmethod
    def from_settings(
        cls,
        store: QuotaStore,
        settings: Settings,
        time_provider: Callable[[], datetime] | None = None,
    ) -> "QuotaGate":
        return cls(
            store,
            free_generation_limit=settings.free_generation_limit,
            daily_email_limit=settings.daily_email_limit,
            premium_daily_email_limit=settings.premium_daily_email_limit,
            free_bulk_email_limit=settings.free_bulk_email_limit,
            time_provider=time_provider,
        )

    def today(self) -> date:
        return self._time_provider().astimezone(timezone.utc).date()

    def _resolve_premium(self, user_id: str, is_premium: Optional[bool]) -> bool:
        return self.store.is_premium(user_id) if is_premium is None else is_premium

    def daily_limit_for(self, is_premium: bool) -> int:
        return self.premium_daily_email_limit if is_premium else self.daily_email_limit

    def reserve_generation(
        self, user_id: str, requested: int, is_premium: Optional[bool] = None
    ) -> GenerationDecision:
        """
        Pre-flight admission for a whole batch of `requested` documents.

        For non-premium users the full batch is reserved with one atomic
        increment-with-ceiling, so two batches started at once can never both
        fit under the free cap. A batch that does not fit is rejected as a
        whole and the counter is left untouched. Premium users reserve
        nothing; their usage is added when the batch settles.
        """
        key = generation_key(user_id)
        premium = self._resolve_premium(user_id, is_premium)
        if premium:
            return GenerationDecision(
                allowed=True, is_premium=True, snapshot=_snapshot(None, self.store.get_count(key))
            )

        limit = self.free_generation_limit
        result = self.store.increment_with_ceiling(key, requested, limit)
        if not result.admitted:
            log.info(
                "[QUOTA REJECTED] generation",
                extra={
                    "user_id": user_id,
                    "requested": requested,
                    "used": result.count,
                    "limit": limit,
                },
            )
            return GenerationDecision(
                allowed=False,
                is_premium=False,
                snapshot=_snapshot(limit, result.count),
                code=UPGRADE_REQUIRED,
            )
        log.debug(
            "[QUOTA] generations reserved",
            extra={"user_id": user_id, "requested": requested, "total": result.count},
        )
        return GenerationDecision(
            allowed=True,
            is_premium=False,
            snapshot=_snapshot(limit, result.count),
            reserved=requested,
        )

    def settle_generation(self, user_id: str, decision: GenerationDecision, produced: int) -> int:
        """
        Close out an admitted batch that produced `produced` documents.

        Returns the generation counter after settlement. Usage ends up equal
        to what was produced: premium batches add it now, reserved batches
        hand back the unused part of their reservation.
        """
        if decision.is_premium:
            return self.record_generations(user_id, produced)
        unused = decision.reserved - produced
        if unused <= 0:
            return self.store.get_count(generation_key(user_id))
        result = self.store.increment_with_ceiling(generation_key(user_id), -unused, None)
        log.debug(
            "[QUOTA] unused reservation released",
            extra={"user_id": user_id, "released": unused, "total": result.count},
        )
        return result.count

    def record_generations(self, user_id: str, produced: int) -> int:
        """Add the number of documents actually produced; returns the new total."""
        key = generation_key(user_id)
        if produced <= 0:
            return self.store.get_count(key)
        result = self.store.increment_with_ceiling(key, produced, None)
        log.debug(
            "[QUOTA] generations recorded",
            extra={"user_id": user_id, "produced": produced, "total": result.count},
        )
        return result.count

    def try_consume_send(self, user_id: str, is_premium: Optional[bool] = None) -> SendDecision:
        """
        Admit one outbound email for today's counter, or reject it.

        The first admitted send of a (user, day) creates the counter at 1.
        """
        premium = self._resolve_premium(user_id, is_premium)
        limit = self.daily_limit_for(premium)
        result = self.store.increment_with_ceiling(
            daily_send_key(user_id, self.today()), 1, limit
        )
        snapshot = _snapshot(limit, result.count)
        if not result.admitted:
            log.info(
                "[QUOTA REJECTED] daily send",
                extra={"user_id": user_id, "count": result.count, "limit": limit},
            )
            return SendDecision(allowed=False, snapshot=snapshot, code=RATE_LIMIT_EXCEEDED)
        return SendDecision(allowed=True, snapshot=snapshot)

    def check_bulk(self, user_id: str, count: int, is_premium: Optional[bool] = None) -> None:
        """
        Raise UpgradeRequiredError when a non-premium user queues more than
        the free bulk allowance.
        """
        if self._resolve_premium(user_id, is_premium):
            return
        if count > self.free_bulk_email_limit:
            raise UpgradeRequiredError(
                f"Free users can send up to {self.free_bulk_email_limit} emails at once. "
                "Upgrade to premium for unlimited bulk sending.",
                limit=self.free_bulk_email_limit,
            )

    def quota_state(self, user_id: str) -> QuotaState:
        day = self.today()
        return QuotaState(
            user_id=user_id,
            is_premium=self.store.is_premium(user_id),
            free_generations_used=self.store.get_count(generation_key(user_id)),
            daily_emails_sent=self.store.get_count(daily_send_key(user_id, day)),
            day=day,
        )


__all__ = [
    "GenerationDecision",
    "QuotaGate",
    "QuotaSnapshot",
    "SendDecision",
    "daily_send_key",
    "generation_key",
]

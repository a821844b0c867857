from __future__ import annotations

import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from certbatch.domain.errors import RATE_LIMIT_EXCEEDED, UPGRADE_REQUIRED, UpgradeRequiredError
from certbatch.infrastructure.memory_store import InMemoryQuotaStore
from certbatch.quota.gate import QuotaGate, daily_send_key, generation_key

USER = "user-1"
DAILY_LIMIT = 5
CONCURRENT_SENDERS = 7


def test_keys_are_scoped_by_user_and_day() -> None:
    assert generation_key(USER) == "generations_user-1"
    assert daily_send_key(USER, date(2026, 3, 14)) == "email_user-1_2026-03-14"


def test_generation_within_free_limit_is_reserved(
    quota_gate: QuotaGate, quota_store: InMemoryQuotaStore
) -> None:
    decision = quota_gate.reserve_generation(USER, 5)
    assert decision.allowed
    assert not decision.is_premium
    assert decision.reserved == 5
    assert decision.remaining == 0
    assert quota_store.get_count(generation_key(USER)) == 5


def test_generation_batch_over_limit_is_rejected_whole(
    quota_gate: QuotaGate, quota_store: InMemoryQuotaStore
) -> None:
    quota_store.set_count(generation_key(USER), 3)

    decision = quota_gate.reserve_generation(USER, 4)

    assert not decision.allowed
    assert decision.code == UPGRADE_REQUIRED
    assert decision.remaining == 2
    assert decision.reserved == 0
    assert quota_store.get_count(generation_key(USER)) == 3


def test_settle_gives_back_unproduced_reservation(
    quota_gate: QuotaGate, quota_store: InMemoryQuotaStore
) -> None:
    decision = quota_gate.reserve_generation(USER, 4)

    assert quota_gate.settle_generation(USER, decision, produced=1) == 1
    assert quota_store.get_count(generation_key(USER)) == 1


def test_settle_fully_produced_batch_keeps_reservation(quota_gate: QuotaGate) -> None:
    decision = quota_gate.reserve_generation(USER, 3)
    assert quota_gate.settle_generation(USER, decision, produced=3) == 3


def test_premium_generation_is_unlimited(
    quota_gate: QuotaGate, quota_store: InMemoryQuotaStore
) -> None:
    quota_store.set_premium(USER, True)
    quota_store.set_count(generation_key(USER), 500)

    decision = quota_gate.reserve_generation(USER, 1000)

    assert decision.allowed
    assert decision.is_premium
    assert decision.remaining is None
    assert quota_store.get_count(generation_key(USER)) == 500
    assert quota_gate.settle_generation(USER, decision, produced=7) == 507


def test_concurrent_reservations_never_exceed_free_limit(
    quota_gate: QuotaGate, quota_store: InMemoryQuotaStore
) -> None:
    barrier = threading.Barrier(CONCURRENT_SENDERS)
    admitted: list[bool] = []
    lock = threading.Lock()

    def _reserve() -> None:
        barrier.wait()
        decision = quota_gate.reserve_generation(USER, 2)
        with lock:
            admitted.append(decision.allowed)

    threads = [threading.Thread(target=_reserve) for _ in range(CONCURRENT_SENDERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    # free limit 5, batches of 2
    assert admitted.count(True) == 2
    assert quota_store.get_count(generation_key(USER)) == 4


def test_record_generations_adds_only_produced(quota_gate: QuotaGate) -> None:
    assert quota_gate.record_generations(USER, 3) == 3
    assert quota_gate.record_generations(USER, 0) == 3
    assert quota_gate.quota_state(USER).free_generations_used == 3


def test_send_counter_starts_at_one_and_stops_at_limit(quota_gate: QuotaGate) -> None:
    decisions = [quota_gate.try_consume_send(USER) for _ in range(DAILY_LIMIT + 2)]

    assert [d.allowed for d in decisions] == [True] * DAILY_LIMIT + [False, False]
    assert decisions[0].snapshot.used == 1
    assert decisions[-1].code == RATE_LIMIT_EXCEEDED
    assert decisions[-1].remaining == 0
    assert quota_gate.quota_state(USER).daily_emails_sent == DAILY_LIMIT


def test_send_counter_resets_on_new_day(quota_store: InMemoryQuotaStore) -> None:
    now = {"value": datetime(2026, 3, 14, 23, 59, tzinfo=timezone.utc)}
    gate = QuotaGate(quota_store, daily_email_limit=1, time_provider=lambda: now["value"])

    assert gate.try_consume_send(USER).allowed
    assert not gate.try_consume_send(USER).allowed

    now["value"] += timedelta(minutes=2)
    assert gate.try_consume_send(USER).allowed


def test_premium_daily_limit_is_higher(quota_gate: QuotaGate) -> None:
    allowed = sum(quota_gate.try_consume_send(USER, is_premium=True).allowed for _ in range(10))
    assert allowed == 10
    assert quota_gate.daily_limit_for(True) == 300


def test_concurrent_sends_never_exceed_limit(quota_gate: QuotaGate) -> None:
    barrier = threading.Barrier(CONCURRENT_SENDERS)
    results: list[bool] = []
    lock = threading.Lock()

    def _send() -> None:
        barrier.wait()
        decision = quota_gate.try_consume_send(USER)
        with lock:
            results.append(decision.allowed)

    threads = [threading.Thread(target=_send) for _ in range(CONCURRENT_SENDERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == DAILY_LIMIT
    assert results.count(False) == CONCURRENT_SENDERS - DAILY_LIMIT
    assert quota_gate.quota_state(USER).daily_emails_sent == DAILY_LIMIT


def test_bulk_check_blocks_free_users_only(
    quota_gate: QuotaGate, quota_store: InMemoryQuotaStore
) -> None:
    quota_gate.check_bulk(USER, 5)
    with pytest.raises(UpgradeRequiredError) as excinfo:
        quota_gate.check_bulk(USER, 6)
    assert excinfo.value.code == UPGRADE_REQUIRED
    assert excinfo.value.limit == 5

    quota_store.set_premium(USER, True)
    quota_gate.check_bulk(USER, 500)

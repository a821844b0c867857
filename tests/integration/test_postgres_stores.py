"""
Integration tests for the PostgreSQL storage backend.

These tests run against a real PostgreSQL instance and verify that:
1. Increment-with-ceiling is atomic under concurrent senders
2. Certificate records round-trip and accept delivery status updates
3. A full batch persists its records through the Postgres stores

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import os
import threading
from typing import Generator

import pytest
from psycopg_pool import ConnectionPool

from certbatch.domain.models import CertificateRecord, EmailStatus, GenerationRequest
from certbatch.infrastructure.postgres_store import PostgresCertificateStore, PostgresQuotaStore
from certbatch.orchestrator import BatchOrchestrator
from certbatch.quota.gate import QuotaGate, generation_key
from certbatch.rendering.reportlab_surface import ReportLabSurface
from certbatch.verification import VerificationIssuer
from conftest import BASE_URL, build_graph

# Test configuration constants
DEFAULT_POOL_MIN = 1
DEFAULT_POOL_MAX = 8
DAILY_LIMIT = 5
CONCURRENT_SENDERS = 12

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
    reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
)


@pytest.fixture
def pool(test_dsn: str, clean_tables) -> Generator[ConnectionPool, None, None]:
    pool = ConnectionPool(test_dsn, min_size=DEFAULT_POOL_MIN, max_size=DEFAULT_POOL_MAX, open=True)
    try:
        yield pool
    finally:
        pool.close()


def _record(certificate_id: str) -> CertificateRecord:
    return CertificateRecord(
        id=certificate_id,
        user_id="u1",
        recipient_name="Ada Lovelace",
        recipient_email="ada@example.com",
        title="Analytical Engines 101",
        issuer_name="Babbage Institute",
        metadata={"Name": "Ada Lovelace", "Score": "97"},
    )


class TestPostgresQuotaStore:
    def test_first_increment_creates_counter(self, pool) -> None:
        store = PostgresQuotaStore(pool=pool)
        result = store.increment_with_ceiling("email_u1_2026-03-14", 1, DAILY_LIMIT)
        assert result.admitted and result.count == 1
        assert store.get_count("email_u1_2026-03-14") == 1
        assert store.get_count("missing") == 0

    def test_ceiling_rejects_without_changing_count(self, pool) -> None:
        store = PostgresQuotaStore(pool=pool)
        for _ in range(DAILY_LIMIT):
            assert store.increment_with_ceiling("k", 1, DAILY_LIMIT).admitted
        rejected = store.increment_with_ceiling("k", 1, DAILY_LIMIT)
        assert not rejected.admitted
        assert rejected.count == DAILY_LIMIT

    def test_unbounded_increment(self, pool) -> None:
        store = PostgresQuotaStore(pool=pool)
        store.increment_with_ceiling("generations_u1", 3, None)
        assert store.increment_with_ceiling("generations_u1", 4, None).count == 7

    def test_negative_amount_releases_without_going_below_zero(self, pool) -> None:
        store = PostgresQuotaStore(pool=pool)
        store.increment_with_ceiling("generations_u1", 5, DAILY_LIMIT)

        assert store.increment_with_ceiling("generations_u1", -3, None).count == 2
        assert store.increment_with_ceiling("generations_u1", -9, None).count == 0
        assert store.increment_with_ceiling("never-created", -1, None).count == 0
        assert store.get_count("never-created") == 0

    def test_concurrent_increments_never_pass_ceiling(self, pool) -> None:
        store = PostgresQuotaStore(pool=pool)
        barrier = threading.Barrier(CONCURRENT_SENDERS)
        admitted = []
        lock = threading.Lock()

        def _worker() -> None:
            barrier.wait()
            result = store.increment_with_ceiling("race", 1, DAILY_LIMIT)
            with lock:
                admitted.append(result.admitted)

        threads = [threading.Thread(target=_worker) for _ in range(CONCURRENT_SENDERS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert admitted.count(True) == DAILY_LIMIT
        assert store.get_count("race") == DAILY_LIMIT

    def test_premium_flag(self, pool) -> None:
        store = PostgresQuotaStore(pool=pool)
        assert not store.is_premium("u1")
        store.set_premium("u1", True)
        assert store.is_premium("u1")
        store.set_premium("u1", False)
        assert not store.is_premium("u1")


class TestPostgresCertificateStore:
    def test_save_get_and_update_status(self, pool) -> None:
        store = PostgresCertificateStore(pool=pool)
        assert store.save_many([_record("c1"), _record("c2")]) == 2

        loaded = store.get("c1")
        assert loaded.recipient_name == "Ada Lovelace"
        assert loaded.metadata == {"Name": "Ada Lovelace", "Score": "97"}
        assert loaded.email_status is None

        assert store.update_delivery_status("c1", EmailStatus.SENT)
        assert store.update_delivery_status("c2", EmailStatus.FAILED, "mailbox full")
        assert not store.update_delivery_status("absent", EmailStatus.SENT)

        sent, failed = store.get("c1"), store.get("c2")
        assert sent.email_status is EmailStatus.SENT and sent.email_sent_at is not None
        assert failed.email_status is EmailStatus.FAILED and failed.email_error == "mailbox full"

    def test_duplicate_ids_are_ignored(self, pool) -> None:
        store = PostgresCertificateStore(pool=pool)
        store.save_many([_record("dup")])
        store.save_many([_record("dup")])
        assert store.get("dup") is not None
        assert store.get("nope") is None


def test_batch_persists_through_postgres(pool) -> None:
    quota_store = PostgresQuotaStore(pool=pool)
    certificate_store = PostgresCertificateStore(pool=pool)
    orchestrator = BatchOrchestrator(
        surface_factory=lambda fmt: ReportLabSurface(),
        issuer=VerificationIssuer(BASE_URL, qr_size=64),
        quota_gate=QuotaGate(quota_store),
        certificate_store=certificate_store,
    )
    request = GenerationRequest(
        scene_graph_json=build_graph().to_json(),
        data_rows=[{"Name": "Ada"}, {"Name": "Alan"}],
        name_column="Name",
        user_id="u-batch",
        issuer_name="Babbage Institute",
        certificate_title="Analytical Engines 101",
    )

    result = orchestrator.generate(request)

    assert len(result.generated_artifact_ids) == 2
    assert quota_store.get_count(generation_key("u-batch")) == 2
    for certificate_id in result.generated_artifact_ids:
        assert certificate_store.get(certificate_id).issuer_name == "Babbage Institute"

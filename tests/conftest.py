"""
Pytest configuration for certbatch.

Provides fixtures for:
- In-memory stores, a fixed-clock quota gate and a recording mail transport
- Small scene graphs and data rows for pipeline tests
- Database connection management and schema setup for integration tests
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional

import psycopg
import pytest

from certbatch.config import Settings
from certbatch.delivery.messages import OutboundMessage
from certbatch.domain.models import Element, ElementKind, Geometry, SceneGraph, Style
from certbatch.infrastructure.memory_store import InMemoryCertificateStore, InMemoryQuotaStore
from certbatch.quota.gate import QuotaGate

FIXED_NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)
BASE_URL = "https://certs.example.org"


class _RecordingTransport:
    """Mail transport double that records messages and can fail on demand."""

    name = "recording"

    def __init__(self, fail_for: Optional[set[str]] = None) -> None:
        self.sent: List[OutboundMessage] = []
        self.fail_for = fail_for or set()

    def send(self, message: OutboundMessage) -> str:
        from certbatch.domain.errors import TransportError

        if message.to in self.fail_for:
            raise TransportError(f"mailbox unavailable: {message.to}")
        self.sent.append(message)
        return f"<msg-{len(self.sent)}@test>"


def build_graph(*, with_qr: bool = True, verification_elements: int = 1) -> SceneGraph:
    elements = [
        Element(
            id="title",
            kind=ElementKind.TEXT,
            geometry=Geometry(left=40, top=40, width=500, height=40),
            style=Style(font_size=28),
            text="Certificate of Achievement",
        ),
        Element(
            id="name",
            kind=ElementKind.TEXT,
            geometry=Geometry(left=40, top=120, width=500, height=40),
            style=Style(font_size=32, font_weight="bold"),
            text="{{Name}}",
            dynamic_key="Name",
        ),
        Element(
            id="frame",
            kind=ElementKind.SHAPE,
            geometry=Geometry(left=10, top=10, width=820, height=575),
            style=Style(fill=None, stroke="#333333", stroke_width=2),
        ),
    ]
    for n in range(verification_elements):
        elements.append(
            Element(
                id=f"verify-{n}",
                kind=ElementKind.TEXT,
                geometry=Geometry(left=40, top=520, width=400, height=16),
                style=Style(font_size=10),
                text="verify link",
                is_verification_url=True,
            )
        )
    if with_qr:
        elements.append(
            Element(
                id="qr",
                kind=ElementKind.QR_PLACEHOLDER,
                geometry=Geometry(left=700, top=440, width=100, height=100),
            )
        )
    return SceneGraph(elements=elements)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def quota_store() -> InMemoryQuotaStore:
    return InMemoryQuotaStore()


@pytest.fixture
def certificate_store() -> InMemoryCertificateStore:
    return InMemoryCertificateStore()


@pytest.fixture
def quota_gate(quota_store: InMemoryQuotaStore, clock) -> QuotaGate:
    return QuotaGate(
        quota_store,
        free_generation_limit=5,
        daily_email_limit=5,
        premium_daily_email_limit=300,
        free_bulk_email_limit=5,
        time_provider=clock,
    )


@pytest.fixture
def transport() -> _RecordingTransport:
    return _RecordingTransport()


@pytest.fixture
def scene_graph() -> SceneGraph:
    return build_graph()


@pytest.fixture
def scene_graph_json(scene_graph: SceneGraph) -> str:
    return scene_graph.to_json()


@pytest.fixture
def rows() -> List[Dict[str, Any]]:
    return [
        {"Name": "Ada Lovelace", "Email": "ada@example.com"},
        {"Name": "Alan Turing", "Email": "alan@example.com"},
        {"Name": "Grace Hopper", "Email": "grace@example.com"},
    ]


# -- integration ---------------------------------------------------------------


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "certbatch"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def db_schema_initialized(db_connection: psycopg.Connection) -> bool:
    """
    Ensure the certbatch tables exist by applying the packaged schema (idempotent).
    """
    from certbatch.infrastructure.postgres_store import SCHEMA_PATH

    init_sql_path = SCHEMA_PATH
    with db_connection.cursor() as cur:
        cur.execute(init_sql_path.read_text(encoding="utf-8"))
    db_connection.commit()
    return True


@pytest.fixture(scope="function")
def clean_tables(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Empty the certbatch tables before and after each test function.
    """
    statement = (
        "TRUNCATE TABLE public.quota_counters, public.user_profiles, public.certificates;"
    )
    with db_connection.cursor() as cur:
        cur.execute(statement)
    db_connection.commit()
    yield
    with db_connection.cursor() as cur:
        cur.execute(statement)
    db_connection.commit()

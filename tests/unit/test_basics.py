import csv
import json
import threading
import time
from pathlib import Path
from time import sleep

import pytest

from certbatch import config
from certbatch.domain.models import SceneGraph
from certbatch.orchestrator import available_backends
from certbatch.utils import profiler
from certbatch.utils.timeouts import call_with_timeout
from scripts import generate_data


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("FREE_GENERATION_LIMIT", "DAILY_EMAIL_LIMIT", "STORAGE_BACKEND", "BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    settings = config.Settings(_env_file=None)
    assert settings.free_generation_limit == 5
    assert settings.daily_email_limit == 100
    assert settings.premium_daily_email_limit == 300
    assert settings.free_bulk_email_limit == 5
    assert settings.storage_backend == "memory"
    assert settings.daily_email_limit_for(True) == 300
    assert settings.daily_email_limit_for(False) == 100


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FREE_GENERATION_LIMIT", "12")
    monkeypatch.setenv("BASE_URL", "https://certs.example.org")
    settings = config.Settings(_env_file=None)
    assert settings.free_generation_limit == 12
    assert settings.base_url == "https://certs.example.org"


def test_get_settings_is_cached() -> None:
    assert config.get_settings() is config.get_settings()


def test_profile_block_measures_time() -> None:
    with profiler.profile_block("sleep") as stats:
        sleep(0.05)
    assert stats.duration_seconds >= 0.05
    if stats.cpu_percent is not None:
        assert isinstance(stats.cpu_percent, float)
    summary = stats.summary(rows=10)
    assert summary["rows_per_second"] > 0


def test_call_with_timeout() -> None:
    assert call_with_timeout(lambda x: x * 2, 21, timeout=1.0) == 42
    assert call_with_timeout(lambda: "inline", timeout=None) == "inline"
    with pytest.raises(TimeoutError, match="slow call timed out"):
        call_with_timeout(time.sleep, 0.5, timeout=0.05, label="slow call")
    with pytest.raises(ZeroDivisionError):
        call_with_timeout(lambda: 1 / 0, timeout=1.0)


def test_timed_out_call_is_left_on_a_daemon_thread() -> None:
    release = threading.Event()
    with pytest.raises(TimeoutError):
        call_with_timeout(release.wait, 5, timeout=0.05, label="stuck render")

    stuck = [t for t in threading.enumerate() if t.name == "certbatch-timeout[stuck render]"]
    assert stuck and all(t.daemon for t in stuck)
    release.set()


def test_available_backends() -> None:
    assert available_backends() == ["memory", "postgres"]


def test_generate_data_writes_recipients_csv(tmp_path: Path) -> None:
    csv_path = tmp_path / "recipients.csv"
    generate_data._generate_recipients_csv(csv_path, rows=5, seed=123, domain="example.com")
    with csv_path.open("r", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    # header + 5 rows
    assert len(rows) == 6
    assert rows[0] == ["Name", "Email", "Course", "Date"]
    assert all("@example.com" in row[1] for row in rows[1:])

    again = tmp_path / "again.csv"
    generate_data._generate_recipients_csv(again, rows=5, seed=123, domain="example.com")
    assert again.read_text(encoding="utf-8") == csv_path.read_text(encoding="utf-8")


def test_sample_template_is_valid() -> None:
    graph = SceneGraph.from_json(generate_data.build_sample_template().to_json())
    assert graph.verification_element().id == "verify"
    assert graph.placeholder_keys() == ["Name", "Course", "Date"]
    assert graph.has_qr_placeholder
    assert json.loads(graph.to_json())["elements"][0]["style"]["fill"] is None


def test_dsn_and_connection_options_follow_settings() -> None:
    from certbatch.infrastructure.db_factory import build_dsn, connection_kwargs

    settings = config.Settings(
        _env_file=None, db_host="db", db_port=6543, db_user="u", db_password="p",
        db_name="certs", db_statement_timeout_ms=1500,
    )
    assert build_dsn(settings) == "postgresql://u:p@db:6543/certs"
    assert connection_kwargs(settings) == {"options": "-c statement_timeout=1500"}


def test_schema_ships_inside_the_package() -> None:
    import certbatch
    from certbatch.infrastructure.postgres_store import SCHEMA_PATH

    assert SCHEMA_PATH.is_file()
    assert Path(certbatch.__file__).resolve().parent in SCHEMA_PATH.parents
    assert "quota_counters" in SCHEMA_PATH.read_text(encoding="utf-8")

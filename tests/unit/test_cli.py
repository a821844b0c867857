from __future__ import annotations

import _thread
import io
import threading
import time
import zipfile
from pathlib import Path

import pytest
from typer.testing import CliRunner

from certbatch import config
from certbatch import main as main_module
from certbatch.domain.models import GenerationRequest, JobStatus
from certbatch.main import app
from certbatch.orchestrator import build_orchestrator
from certbatch.quota.gate import generation_key
from conftest import build_graph

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.setenv("MAIL_TRANSPORT", "smtp")
    monkeypatch.setenv("FREE_GENERATION_LIMIT", "5")
    monkeypatch.setenv("BASE_URL", "https://certs.example.org")
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()


def _inputs(tmp_path: Path, count: int) -> tuple[Path, Path]:
    template = tmp_path / "template.json"
    template.write_text(build_graph().to_json(), encoding="utf-8")
    data = tmp_path / "people.csv"
    lines = ["Full Name,Email"] + [f"Person {i},p{i}@example.com" for i in range(count)]
    data.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return template, data


def test_info_shows_configuration() -> None:
    result = runner.invoke(app, ["info"])
    assert result.exit_code == 0
    assert "storage=memory" in result.output
    assert "base_url=https://certs.example.org" in result.output


def test_preview_writes_single_document(tmp_path: Path) -> None:
    template, data = _inputs(tmp_path, 2)
    output = tmp_path / "preview.png"

    result = runner.invoke(
        app, ["preview", str(template), str(data), "--row", "2", "--format", "png", "-o", str(output)]
    )

    assert result.exit_code == 0, result.output
    assert output.read_bytes().startswith(b"\x89PNG")


def test_preview_row_out_of_range(tmp_path: Path) -> None:
    template, data = _inputs(tmp_path, 1)
    result = runner.invoke(app, ["preview", str(template), str(data), "--row", "3"])
    assert result.exit_code == 1
    assert "out of range" in result.output


def test_generate_writes_archive_with_guessed_name_column(tmp_path: Path) -> None:
    template, data = _inputs(tmp_path, 3)
    output = tmp_path / "out.zip"

    result = runner.invoke(
        app,
        [
            "generate", str(template), str(data),
            "--issuer", "Babbage Institute",
            "--title", "Analytical Engines 101",
            "-o", str(output),
        ],
    )

    assert result.exit_code == 0, result.output
    with zipfile.ZipFile(io.BytesIO(output.read_bytes())) as zf:
        names = [n for n in zf.namelist() if n.startswith("certificates/")]
    assert sorted(names) == [
        "certificates/Person_0.pdf",
        "certificates/Person_1.pdf",
        "certificates/Person_2.pdf",
    ]


def test_generate_over_free_limit_exits_with_upgrade_message(tmp_path: Path) -> None:
    template, data = _inputs(tmp_path, 6)
    result = runner.invoke(
        app,
        ["generate", str(template), str(data), "--issuer", "I", "--title", "T",
         "-o", str(tmp_path / "out.zip")],
    )
    assert result.exit_code == 2
    assert "Free generation limit reached" in result.output
    assert not (tmp_path / "out.zip").exists()


def test_generate_premium_user_is_not_capped(tmp_path: Path) -> None:
    template, data = _inputs(tmp_path, 6)
    result = runner.invoke(
        app,
        ["generate", str(template), str(data), "--issuer", "I", "--title", "T", "--premium",
         "-o", str(tmp_path / "out.zip")],
    )
    assert result.exit_code == 0, result.output
    assert (tmp_path / "out.zip").exists()


def test_generate_bulk_email_gate_for_free_users(tmp_path: Path) -> None:
    template, data = _inputs(tmp_path, 6)
    result = runner.invoke(
        app,
        ["generate", str(template), str(data), "--issuer", "I", "--title", "T", "--send-email"],
    )
    assert result.exit_code == 2
    assert "Free users can send up to 5 emails" in result.output


def test_generate_unknown_name_column(tmp_path: Path) -> None:
    template, data = _inputs(tmp_path, 1)
    result = runner.invoke(
        app,
        ["generate", str(template), str(data), "--issuer", "I", "--title", "T",
         "--name-column", "Nope"],
    )
    assert result.exit_code == 1
    assert "Name column 'Nope' not found" in result.output


def test_interrupt_cancels_job_and_keeps_partial_results() -> None:
    orchestrator = build_orchestrator(config.get_settings())
    orchestrator.start_job(
        GenerationRequest(
            scene_graph_json=build_graph().to_json(),
            data_rows=[{"Name": f"Person {i}"} for i in range(4)],
            name_column="Name",
            user_id="cli-user",
            issuer_name="Babbage Institute",
            certificate_title="Analytical Engines 101",
        )
    )
    fired = threading.Event()

    def _on_progress(done: int, total: int, label: str) -> None:
        if done == 2 and not fired.is_set():
            fired.set()
            # Ctrl-C arrives on the main thread while the worker is mid-batch
            _thread.interrupt_main()
            deadline = time.monotonic() + 5
            while not orchestrator.job.cancel_requested and time.monotonic() < deadline:
                time.sleep(0.01)

    result = main_module.run_interruptible(orchestrator, _on_progress, poll_interval=0.01)

    assert result.status is JobStatus.CANCELLED
    assert len(result.generated_artifact_ids) == 2
    with zipfile.ZipFile(io.BytesIO(result.archive_bytes)) as zf:
        assert len([n for n in zf.namelist() if n.startswith("certificates/")]) == 2
    assert orchestrator.quota_gate.store.get_count(generation_key("cli-user")) == 2

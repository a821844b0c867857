from __future__ import annotations

import io
import json
import zipfile
from pathlib import Path

import pytest

from certbatch.archive import ArchivePackager, sanitize_filename
from certbatch.domain.models import Artifact, OutputFormat


def _artifact(row_index: int, name: str, fmt: OutputFormat = OutputFormat.PDF) -> Artifact:
    return Artifact(
        certificate_id=f"cert-{row_index}",
        content=f"document {row_index}".encode(),
        row_index=row_index,
        recipient_name=name,
        output_format=fmt,
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Ada Lovelace", "Ada_Lovelace"),
        ("  O'Brien,   Jr. ", "OBrien_Jr"),
        ("José Ñúñez", "José_Ñúñez"),
        ("../../etc/passwd", "etcpasswd"),
        ("x" * 80, "x" * 50),
    ],
)
def test_sanitize_filename(raw: str, expected: str) -> None:
    assert sanitize_filename(raw) == expected


def test_entries_live_under_certificates_folder() -> None:
    packager = ArchivePackager()
    assert packager.add(_artifact(0, "Ada Lovelace")) == "certificates/Ada_Lovelace.pdf"
    assert packager.add(_artifact(1, "Pic", OutputFormat.PNG)) == "certificates/Pic.png"


def test_duplicate_names_never_overwrite() -> None:
    packager = ArchivePackager()
    names = [
        packager.add(_artifact(0, "John Smith")),
        packager.add(_artifact(1, "John Smith")),
        packager.add(_artifact(2, "John  Smith!")),
    ]

    assert names == [
        "certificates/John_Smith.pdf",
        "certificates/John_Smith_1.pdf",
        "certificates/John_Smith_2.pdf",
    ]
    with zipfile.ZipFile(io.BytesIO(packager.finalize())) as zf:
        pdfs = [n for n in zf.namelist() if n.endswith(".pdf")]
        assert len(pdfs) == 3
        assert zf.read("certificates/John_Smith_1.pdf") == b"document 1"


def test_blank_name_falls_back_to_row_number() -> None:
    packager = ArchivePackager()
    assert packager.add(_artifact(4, "!!!")) == "certificates/certificate_5.pdf"


def test_finalize_writes_manifest_and_is_idempotent(tmp_path: Path) -> None:
    packager = ArchivePackager()
    packager.add(_artifact(0, "Ada"))
    packager.add(_artifact(1, "Alan"))

    first = packager.finalize()
    assert packager.finalize() is first

    with zipfile.ZipFile(io.BytesIO(first)) as zf:
        manifest = json.loads(zf.read("manifest.json"))
        info = zf.getinfo("certificates/Ada.pdf")
    assert manifest["count"] == 2
    assert [e["certificate_id"] for e in manifest["entries"]] == ["cert-0", "cert-1"]
    assert info.compress_type == zipfile.ZIP_DEFLATED

    saved = packager.save(tmp_path / "out" / "bundle.zip")
    assert saved.read_bytes() == first


def test_add_after_finalize_fails() -> None:
    packager = ArchivePackager()
    packager.finalize()
    with pytest.raises(RuntimeError):
        packager.add(_artifact(0, "Late"))

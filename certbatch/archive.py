"""
Archive packager.

Streams rendered documents into a single ZIP bundle under `certificates/`,
naming each entry after its recipient. Two rows deriving the same name never
overwrite each other: the later one gets its row index appended. A
`manifest.json` mapping entries to certificate ids closes the bundle.
"""

from __future__ import annotations

import io
import json
import re
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from certbatch.domain.models import Artifact
from certbatch.utils.logging import get_logger

log = get_logger(__name__)

ARCHIVE_FOLDER = "certificates"
MAX_STEM_LENGTH = 50
COMPRESS_LEVEL = 6

_WHITESPACE = re.compile(r"\s+")


def sanitize_filename(name: str, max_length: int = MAX_STEM_LENGTH) -> str:
    """Strip non-alphanumeric characters and collapse whitespace to underscores."""
    kept = "".join(ch for ch in name if ch.isalnum() or ch.isspace())
    return _WHITESPACE.sub("_", kept.strip())[:max_length]


class ArchivePackager:
    """
    Accumulates artifacts into an in-memory ZIP.

    Entries are compressed as they are added, so only the compressed bundle
    and the artifact currently being written are held in memory.
    """

    def __init__(self, folder: str = ARCHIVE_FOLDER, compress_level: int = COMPRESS_LEVEL) -> None:
        self.folder = folder.strip("/")
        self._buffer = io.BytesIO()
        self._zip: Optional[zipfile.ZipFile] = zipfile.ZipFile(
            self._buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=compress_level
        )
        self._names: Set[str] = set()
        self._entries: List[Dict[str, Any]] = []
        self._finalized: Optional[bytes] = None

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def names(self) -> List[str]:
        return [entry["file"] for entry in self._entries]

    def _entry_name(self, artifact: Artifact) -> str:
        stem = sanitize_filename(artifact.recipient_name) or f"certificate_{artifact.row_index + 1}"
        ext = artifact.output_format.extension
        candidate = f"{stem}{ext}"
        if candidate in self._names:
            candidate = f"{stem}_{artifact.row_index}{ext}"
            counter = 2
            while candidate in self._names:
                candidate = f"{stem}_{artifact.row_index}_{counter}{ext}"
                counter += 1
            log.debug(
                "[ARCHIVE] duplicate name disambiguated",
                extra={"row_index": artifact.row_index, "file": candidate},
            )
        self._names.add(candidate)
        return candidate

    def add(self, artifact: Artifact) -> str:
        """Write one artifact; returns its path inside the bundle."""
        if self._zip is None:
            raise RuntimeError("Archive already finalized")
        name = self._entry_name(artifact)
        arcname = f"{self.folder}/{name}" if self.folder else name
        self._zip.writestr(arcname, artifact.content)
        self._entries.append(
            {
                "file": arcname,
                "certificate_id": artifact.certificate_id,
                "row_index": artifact.row_index,
                "recipient_name": artifact.recipient_name,
            }
        )
        return arcname

    def finalize(self) -> bytes:
        """Write the manifest, close the ZIP and return its bytes (idempotent)."""
        if self._finalized is not None:
            return self._finalized
        if self._zip is None:
            raise RuntimeError("Archive was closed without being finalized")
        manifest = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "count": len(self._entries),
            "entries": self._entries,
        }
        self._zip.writestr("manifest.json", json.dumps(manifest, ensure_ascii=False, indent=2))
        self._zip.close()
        self._zip = None
        self._finalized = self._buffer.getvalue()
        log.info(
            "[ARCHIVE] finalized",
            extra={"entries": len(self._entries), "bytes": len(self._finalized)},
        )
        return self._finalized

    def save(self, path: Path | str) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.finalize())
        return target


__all__ = ["ARCHIVE_FOLDER", "ArchivePackager", "sanitize_filename"]

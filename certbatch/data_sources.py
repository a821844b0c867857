"""
Tabular data sources: CSV and Excel workbooks to data rows.

Every row of one source shares the header list. Cells are kept as scalars
(strings, numbers); empty cells become "" and fully blank rows are dropped.
"""

from __future__ import annotations

import csv
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from certbatch.domain.errors import DataSourceError
from certbatch.domain.models import DataRow
from certbatch.utils.logging import get_logger

log = get_logger(__name__)

SUPPORTED_SUFFIXES = (".csv", ".xlsx", ".xlsm")


def _clean_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return value.strip()
    return value


def _normalize_headers(raw: List[Any]) -> List[str]:
    headers: List[str] = []
    for index, value in enumerate(raw):
        name = str(value).strip() if value is not None else ""
        if not name:
            name = f"Column_{index + 1}"
        base, suffix = name, 2
        while name in headers:
            name = f"{base}_{suffix}"
            suffix += 1
        headers.append(name)
    return headers


def _rows_from_matrix(matrix: List[List[Any]]) -> Tuple[List[str], List[DataRow]]:
    if not matrix:
        raise DataSourceError("No data found in spreadsheet")
    headers = _normalize_headers(matrix[0])
    rows: List[DataRow] = []
    for raw in matrix[1:]:
        cells = [_clean_cell(v) for v in raw]
        if all(cell == "" for cell in cells):
            continue
        cells += [""] * (len(headers) - len(cells))
        rows.append(dict(zip(headers, cells)))
    if not rows:
        raise DataSourceError("No data found in spreadsheet")
    return headers, rows


def _read_csv(path: Path) -> List[List[Any]]:
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        return [row for row in csv.reader(f)]


def _read_xlsx(path: Path, sheet: Optional[str]) -> List[List[Any]]:
    try:
        workbook = load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, KeyError, OSError) as exc:
        raise DataSourceError(f"Cannot open workbook {path.name}: {exc}") from exc
    try:
        if sheet is not None:
            if sheet not in workbook.sheetnames:
                raise DataSourceError(
                    f"Sheet '{sheet}' not found. Available: {', '.join(workbook.sheetnames)}"
                )
            worksheet = workbook[sheet]
        else:
            worksheet = workbook.worksheets[0]
        return [list(row) for row in worksheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def load_rows(path: Path | str, sheet: Optional[str] = None) -> Tuple[List[str], List[DataRow]]:
    """
    Load a CSV or Excel file.

    Parameters
    ----------
    path : Path | str
        `.csv` (UTF-8, BOM tolerated) or `.xlsx` / `.xlsm`.
    sheet : str, optional
        Worksheet name for workbooks; the first sheet by default.

    Returns
    -------
    tuple
        (headers, rows) where each row maps header to cell value.

    Raises
    ------
    DataSourceError
        If the file is missing, unsupported, unreadable or has no data rows.
    """
    source = Path(path)
    if not source.is_file():
        raise DataSourceError(f"Data file not found: {source}")
    suffix = source.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise DataSourceError(
            f"Unsupported data file type '{suffix}'. Use one of: {', '.join(SUPPORTED_SUFFIXES)}"
        )
    if suffix == ".csv":
        try:
            matrix = _read_csv(source)
        except (UnicodeDecodeError, csv.Error) as exc:
            raise DataSourceError(f"Cannot parse CSV {source.name}: {exc}") from exc
    else:
        matrix = _read_xlsx(source, sheet)

    headers, rows = _rows_from_matrix(matrix)
    log.info(
        "[DATA LOADED]",
        extra={"path": str(source), "rows": len(rows), "columns": len(headers)},
    )
    return headers, rows


def list_sheets(path: Path | str) -> List[Tuple[str, int]]:
    """(sheet name, approximate data-row count) for each worksheet of a workbook."""
    source = Path(path)
    try:
        workbook = load_workbook(source, read_only=True, data_only=True)
    except (InvalidFileException, KeyError, OSError) as exc:
        raise DataSourceError(f"Cannot open workbook {source.name}: {exc}") from exc
    try:
        return [(ws.title, max((ws.max_row or 1) - 1, 0)) for ws in workbook.worksheets]
    finally:
        workbook.close()


def guess_column(headers: List[str], *hints: str) -> Optional[str]:
    """First header containing any hint, case-insensitively."""
    lowered: Dict[str, str] = {h.lower(): h for h in headers}
    for hint in hints:
        for key, original in lowered.items():
            if hint in key:
                return original
    return None


__all__ = ["SUPPORTED_SUFFIXES", "guess_column", "list_sheets", "load_rows"]

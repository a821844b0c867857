"""
Row binding for certificate templates.

`bind_row` substitutes one data row into a copy of the scene graph: every
placeholder element shows the string value of its bound column, the
verification element shows the certificate's verification URL and every QR
placeholder carries the QR image. The input graph is never mutated, so one
parsed template serves every row of a batch as well as the editor preview.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional

from certbatch.domain.models import ElementKind, SceneGraph
from certbatch.verification import Verification, verification_url


def format_cell(value: Any) -> str:
    """
    Render a data-row cell as display text.

    Missing and blank values become the empty string. Whole-number floats
    (as produced by spreadsheet readers) lose their trailing ``.0``.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    text = str(value)
    return "" if not text.strip() else text


def bind_row(
    graph: SceneGraph,
    row: Mapping[str, Any],
    verification: Optional[Verification] = None,
) -> SceneGraph:
    """
    Return a bound deep copy of `graph` for a single data row.

    Parameters
    ----------
    graph : SceneGraph
        Parsed template; left untouched.
    row : Mapping[str, Any]
        Column name to scalar value.
    verification : Verification, optional
        Identifier, URL and QR image issued for this row. When omitted the
        verification element and QR placeholders keep their template content
        (preview mode).

    Returns
    -------
    SceneGraph
        Independent copy with placeholder text substituted.
    """
    bound = graph.model_copy(deep=True)
    for element in bound.elements:
        if element.is_verification_url:
            if verification is not None:
                element.text = verification.url
            continue
        if element.kind is ElementKind.QR_PLACEHOLDER:
            if verification is not None and verification.qr_data_url:
                element.src = verification.qr_data_url
            continue
        if element.is_placeholder:
            element.text = format_cell(row.get(element.dynamic_key))  # type: ignore[arg-type]
    return bound


def preview_row(graph: SceneGraph, row: Mapping[str, Any]) -> SceneGraph:
    """Non-destructive editor preview: placeholders only, no verification issued."""
    return bind_row(graph, row, verification=None)


__all__ = ["bind_row", "format_cell", "preview_row", "verification_url"]

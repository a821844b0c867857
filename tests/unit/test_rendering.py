from __future__ import annotations

import io

import pytest
from PIL import Image

from certbatch.binding import bind_row
from certbatch.config import Settings
from certbatch.domain.errors import JobValidationError, RenderError
from certbatch.domain.models import Element, ElementKind, Geometry, OutputFormat, SceneGraph, Style
from certbatch.rendering import PillowSurface, available_formats, get_surface
from certbatch.rendering.abstract import AbstractRenderSurface, decode_data_url, parse_color
from certbatch.rendering.reportlab_surface import ReportLabSurface, resolve_font_name
from certbatch.verification import VerificationIssuer
from conftest import BASE_URL

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def _bound(scene_graph: SceneGraph) -> SceneGraph:
    verification = VerificationIssuer(BASE_URL, qr_size=80).issue()
    return bind_row(scene_graph, {"Name": "Ada Lovelace"}, verification)


class _ExplodingSurface(AbstractRenderSurface):
    name = "exploding"
    output_format = OutputFormat.PDF

    def _render(self, graph: SceneGraph) -> bytes:
        raise ValueError("unsupported glyph")


def test_pdf_surface_renders_document_with_verification_link(scene_graph: SceneGraph) -> None:
    graph = _bound(scene_graph)
    url = graph.verification_element().text

    with ReportLabSurface() as surface:
        data = surface.render(graph)
        assert surface.renders == 1

    assert data.startswith(b"%PDF")
    assert b"/URI" in data
    assert url.encode() in data


def test_pdf_surface_is_reusable_across_rows(scene_graph: SceneGraph) -> None:
    surface = ReportLabSurface()
    first = surface.render(_bound(scene_graph))
    surface.reset()
    second = surface.render(_bound(scene_graph))
    surface.close()

    assert first.startswith(b"%PDF") and second.startswith(b"%PDF")
    assert surface.renders == 2


def test_png_surface_renders_at_scale(scene_graph: SceneGraph) -> None:
    surface = PillowSurface(scale=1.0)
    data = surface.render(_bound(scene_graph))

    assert data.startswith(PNG_MAGIC)
    with Image.open(io.BytesIO(data)) as img:
        assert img.size == (int(scene_graph.width), int(scene_graph.height))


def test_png_surface_handles_rotation_and_shapes() -> None:
    graph = SceneGraph(
        width=200,
        height=100,
        elements=[
            Element(
                id="ellipse",
                kind=ElementKind.SHAPE,
                geometry=Geometry(left=100, top=50, width=60, height=30, angle=30,
                                  origin_x="center", origin_y="center"),
                style=Style(fill="#ff0000", shape="ellipse"),
            ),
            Element(
                id="rule",
                kind=ElementKind.LINE,
                geometry=Geometry(left=10, top=90, width=180, height=0),
                style=Style(stroke="#000000", stroke_width=1),
            ),
            Element(
                id="remote",
                kind=ElementKind.IMAGE,
                geometry=Geometry(left=0, top=0, width=20, height=20),
                src="https://example.com/logo.png",
            ),
        ],
    )
    data = PillowSurface(scale=1.0).render(graph)
    with Image.open(io.BytesIO(data)) as img:
        assert img.size == (200, 100)


def test_surface_wraps_unexpected_errors() -> None:
    with pytest.raises(RenderError, match="unsupported glyph"):
        _ExplodingSurface().render(SceneGraph())


def test_get_surface_by_format() -> None:
    settings = Settings(png_scale=1.5)
    assert isinstance(get_surface("pdf", settings), ReportLabSurface)
    png = get_surface(OutputFormat.PNG, settings)
    assert isinstance(png, PillowSurface)
    assert png.scale == 1.5
    assert available_formats() == ["pdf", "png"]


def test_get_surface_rejects_unknown_format() -> None:
    with pytest.raises(JobValidationError):
        get_surface("svg", Settings())


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("#ff0000", (255, 0, 0, 255)),
        ("transparent", None),
        (None, None),
    ],
)
def test_parse_color(value, expected) -> None:
    assert parse_color(value) == expected


def test_decode_data_url_ignores_remote_sources() -> None:
    assert decode_data_url("https://example.com/a.png") is None
    assert decode_data_url("data:image/png;base64,cG5n") == b"png"


def test_resolve_font_name_falls_back_to_base14() -> None:
    assert resolve_font_name("Helvetica", bold=True) == "Helvetica-Bold"
    assert resolve_font_name("Times New Roman", italic=True) == "Times-Italic"
    assert resolve_font_name("Some Unknown Script") == "Helvetica"

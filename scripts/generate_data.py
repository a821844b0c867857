"""
Sample data script for certbatch.

Writes a ready-to-use certificate template (scene graph JSON) and a
deterministic pseudo-random recipients CSV, and can apply the Postgres schema
for the `postgres` storage backend.
"""

from __future__ import annotations

import csv
import random
import sys
import time
from pathlib import Path

import typer

from certbatch.domain.models import (
    DEFAULT_PAGE_HEIGHT,
    DEFAULT_PAGE_WIDTH,
    Element,
    ElementKind,
    Geometry,
    SceneGraph,
    Style,
)
from certbatch.infrastructure.postgres_store import apply_schema

app = typer.Typer(help="Generate a sample template and recipients file (CSV).")

FIRST_NAMES = ["Ana", "Bruno", "Chen", "Dara", "Elif", "Farid", "Grace", "Hiro", "Ines", "Jonas"]
LAST_NAMES = ["Silva", "Okafor", "Nguyen", "Muller", "Rossi", "Kowalski", "Haddad", "Tanaka"]
COURSES = ["Data Engineering", "Applied Statistics", "Web Security", "Cloud Foundations"]


def build_sample_template() -> SceneGraph:
    """Landscape A4 certificate with name, course and date placeholders plus a QR code."""
    width, height = DEFAULT_PAGE_WIDTH, DEFAULT_PAGE_HEIGHT
    centre = width / 2

    def _text(id_: str, text: str, top: float, size: float, **extra) -> Element:
        return Element(
            id=id_,
            kind=ElementKind.TEXT,
            geometry=Geometry(left=centre, top=top, width=width - 160, height=size * 1.4, origin_x="center"),
            style=Style(fill="#1f2933", font_family="Helvetica", font_size=size, text_align="center"),
            text=text,
            **extra,
        )

    elements = [
        Element(
            id="border",
            kind=ElementKind.SHAPE,
            geometry=Geometry(left=24, top=24, width=width - 48, height=height - 48),
            style=Style(fill=None, stroke="#b08d57", stroke_width=4),
        ),
        _text("heading", "Certificate of Completion", 90, 36),
        _text("presented", "This certifies that", 170, 16),
        _text("name", "{{Name}}", 210, 40, dynamic_key="Name"),
        _text("course", "{{Course}}", 290, 18, dynamic_key="Course"),
        _text("date", "{{Date}}", 330, 14, dynamic_key="Date"),
        Element(
            id="qr",
            kind=ElementKind.QR_PLACEHOLDER,
            geometry=Geometry(left=width - 170, top=height - 170, width=110, height=110),
        ),
        Element(
            id="verify",
            kind=ElementKind.TEXT,
            geometry=Geometry(left=60, top=height - 80, width=420, height=18),
            style=Style(fill="#52606d", font_family="Helvetica", font_size=10),
            text="verification link",
            is_verification_url=True,
        ),
    ]
    return SceneGraph(width=width, height=height, background="#ffffff", elements=elements)


def _generate_recipients_csv(csv_path: Path, rows: int, seed: int, domain: str) -> None:
    rng = random.Random(seed)
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["Name", "Email", "Course", "Date"])
        for i in range(rows):
            first, last = rng.choice(FIRST_NAMES), rng.choice(LAST_NAMES)
            email = f"{first}.{last}.{i}@{domain}".lower()
            date = f"2026-{rng.randint(1, 12):02d}-{rng.randint(1, 28):02d}"
            writer.writerow([f"{first} {last}", email, rng.choice(COURSES), date])


@app.command()
def main(
    rows: int = typer.Option(
        25,
        "--rows",
        "-r",
        help="Number of recipients to generate.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    output_dir: Path = typer.Option(
        Path("sample"),
        "--output-dir",
        "-o",
        help="Directory for template.json and recipients.csv.",
    ),
    domain: str = typer.Option(
        "example.com",
        "--domain",
        help="Email domain for generated recipients.",
    ),
    init_db: bool = typer.Option(
        False,
        "--init-db",
        help="Also apply the certbatch schema to the configured Postgres database.",
    ),
) -> None:
    """
    Generate a sample template and recipients CSV, optionally initializing Postgres.
    """
    start = time.perf_counter()
    output_dir.mkdir(parents=True, exist_ok=True)

    template_path = output_dir / "template.json"
    template_path.write_text(build_sample_template().to_json(), encoding="utf-8")

    csv_path = output_dir / "recipients.csv"
    typer.echo(f"Generating {rows:,} recipients -> {csv_path} (seed={seed})")
    _generate_recipients_csv(csv_path, rows=rows, seed=seed, domain=domain)
    typer.echo(
        f"Wrote {template_path} and {csv_path} in {time.perf_counter() - start:.2f}s"
    )

    if init_db:
        typer.echo("Applying schema to Postgres...")
        apply_schema()
        typer.echo("Schema applied.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)

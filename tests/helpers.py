"""Shared builders for the test suite."""

from __future__ import annotations

from pathlib import Path

from style_oracle.model.query import StyleQuery

HIGHLIGHT_HTML = '<div class="highlight" id="main">Hello</div><p class="note">x</p>'
HIGHLIGHT_CSS = ".highlight { color: red; margin: 4px 8px; }"


def make_query(
    selector: str = ".highlight",
    property_name: str | None = "color",
    *,
    html: str = HIGHLIGHT_HTML,
    css: tuple[str, ...] = (HIGHLIGHT_CSS,),
    pseudo_element: str | None = None,
) -> StyleQuery:
    return StyleQuery.create(html, css, selector, property_name, pseudo_element)


def read_spawns(log: Path) -> list[int]:
    """Pids recorded by the fake engine, in start order."""
    if not log.exists():
        return []
    return [int(line.split()[0]) for line in log.read_text().splitlines() if line.strip()]

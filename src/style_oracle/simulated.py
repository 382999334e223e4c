"""Heuristic style resolution for development without an engine installed.

Nothing here is a CSS implementation: selectors are matched against the
markup with simple patterns and declarations from rules naming the exact
query selector are applied in source order. Every result is flagged
``simulated=True`` so it can never be mistaken for an engine answer.
"""

from __future__ import annotations

import re

from style_oracle.model.query import StyleQuery, StyleResult

DEFAULT_STYLES: dict[str, str] = {
    "display": "block",
    "color": "rgb(0, 0, 0)",
    "font-family": "serif",
    "font-size": "16px",
    "font-weight": "400",
    "line-height": "normal",
    "margin-top": "0px",
    "margin-right": "0px",
    "margin-bottom": "0px",
    "margin-left": "0px",
    "padding-top": "0px",
    "padding-right": "0px",
    "padding-bottom": "0px",
    "padding-left": "0px",
    "border-top-width": "0px",
    "border-right-width": "0px",
    "border-bottom-width": "0px",
    "border-left-width": "0px",
    "background-color": "rgba(0, 0, 0, 0)",
    "position": "static",
    "z-index": "auto",
}

NAMED_COLORS: dict[str, tuple[int, int, int]] = {
    "black": (0, 0, 0),
    "white": (255, 255, 255),
    "red": (255, 0, 0),
    "green": (0, 128, 0),
    "lime": (0, 255, 0),
    "blue": (0, 0, 255),
    "yellow": (255, 255, 0),
    "orange": (255, 165, 0),
    "purple": (128, 0, 128),
    "gray": (128, 128, 128),
    "grey": (128, 128, 128),
    "silver": (192, 192, 192),
    "navy": (0, 0, 128),
    "teal": (0, 128, 128),
    "maroon": (128, 0, 0),
}

_BOX_SHORTHANDS = ("margin", "padding")
_SIDES = ("top", "right", "bottom", "left")

_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_RULE = re.compile(r"([^{}]+)\{([^{}]*)\}")
_HEX = re.compile(r"^#([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_COMPOUND = re.compile(r"^([a-zA-Z][a-zA-Z0-9-]*)?((?:[.#][a-zA-Z_-][a-zA-Z0-9_-]*)*)$")
_OPEN_TAG = re.compile(r"<([a-zA-Z][a-zA-Z0-9-]*)([^>]*)>")
_ATTR = re.compile(r"""([a-zA-Z_:][-a-zA-Z0-9_:.]*)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))""")


def normalize_color(value: str) -> str:
    """Serialise a named or hex colour the way computed styles report it."""
    text = value.strip().lower()
    if text == "transparent":
        return "rgba(0, 0, 0, 0)"
    if text in NAMED_COLORS:
        r, g, b = NAMED_COLORS[text]
        return f"rgb({r}, {g}, {b})"
    match = _HEX.match(text)
    if match:
        digits = match.group(1)
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        r, g, b = (int(digits[i:i + 2], 16) for i in (0, 2, 4))
        return f"rgb({r}, {g}, {b})"
    return value.strip()


def parse_declarations(block: str) -> list[tuple[str, str]]:
    """Split a declaration block into ``(property, value)`` pairs."""
    declarations: list[tuple[str, str]] = []
    for item in block.split(";"):
        name, sep, value = item.partition(":")
        if not sep:
            continue
        name = name.strip().lower()
        value = value.replace("!important", "").strip()
        if name and value:
            declarations.append((name, value))
    return declarations


def expand_declaration(name: str, value: str) -> list[tuple[str, str]]:
    """Expand box shorthands and normalise colour values."""
    if name in _BOX_SHORTHANDS:
        parts = value.split()
        if 1 <= len(parts) <= 4:
            top = parts[0]
            right = parts[1] if len(parts) > 1 else top
            bottom = parts[2] if len(parts) > 2 else top
            left = parts[3] if len(parts) > 3 else right
            return [
                (f"{name}-{side}", _zero_px(v))
                for side, v in zip(_SIDES, (top, right, bottom, left))
            ]
    if name == "color" or name.endswith("-color"):
        return [(name, normalize_color(value))]
    if name == "background" and len(value.split()) == 1:
        return [("background-color", normalize_color(value))]
    return [(name, value)]


def _zero_px(value: str) -> str:
    return "0px" if value == "0" else value


def _element_attrs(markup: str) -> list[tuple[str, dict[str, str]]]:
    elements = []
    for tag, raw_attrs in _OPEN_TAG.findall(markup):
        attrs = {}
        for name, dq, sq, bare in _ATTR.findall(raw_attrs):
            attrs[name.lower()] = dq or sq or bare
        elements.append((tag.lower(), attrs))
    return elements


def _matches_compound(compound: str, tag: str, attrs: dict[str, str]) -> bool | None:
    """True/False for a simple compound selector; None when it is too complex to judge."""
    match = _COMPOUND.match(compound)
    if not match or not compound:
        return None
    tag_part, rest = match.groups()
    if tag_part and tag_part.lower() != tag:
        return False
    classes = attrs.get("class", "").split()
    for kind, name in re.findall(r"([.#])([a-zA-Z_-][a-zA-Z0-9_-]*)", rest or ""):
        if kind == "." and name not in classes:
            return False
        if kind == "#" and attrs.get("id") != name:
            return False
    return True


def find_element(markup: str, selector: str) -> tuple[str, dict[str, str]] | None:
    """Find the first element the selector plausibly matches.

    Descendant selectors are judged on their last compound only. Selectors
    with combinators or pseudo-classes this heuristic cannot read match
    nothing.
    """
    parts = selector.strip().split()
    if not parts:
        return None
    target = parts[-1]
    for tag, attrs in _element_attrs(markup):
        if _matches_compound(target, tag, attrs):
            return tag, attrs
    return None


class SimulatedEngine:
    """Pattern-matched stand-in for a real engine."""

    def compute(self, query: StyleQuery) -> dict[str, str] | None:
        """All simulated computed styles, or None when nothing matches."""
        element = find_element(query.html, query.selector)
        if element is None:
            return None
        _, attrs = element

        styles = dict(DEFAULT_STYLES)
        wanted = query.selector.strip()
        for sheet in query.css:
            for selectors, block in _RULE.findall(_COMMENT.sub("", sheet)):
                if wanted not in (s.strip() for s in selectors.split(",")):
                    continue
                for name, value in parse_declarations(block):
                    styles.update(expand_declaration(name, value))

        # Inline style attributes beat stylesheet rules.
        for name, value in parse_declarations(attrs.get("style", "")):
            styles.update(expand_declaration(name, value))
        return styles

    def resolve(self, query: StyleQuery) -> StyleResult:
        styles = self.compute(query)
        if styles is None:
            return StyleResult.not_matched(query.id, query.selector, simulated=True)
        if query.wants_all_styles:
            return StyleResult.styles(query.id, styles, simulated=True)
        value = styles.get(query.property_name.lower())
        if value is None:
            return StyleResult.failure(
                query.id, f"Property '{query.property_name}' not found or invalid", simulated=True,
            )
        return StyleResult.value(query.id, value, simulated=True)

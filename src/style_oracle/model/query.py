"""Style query and result value types."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable

NOT_MATCHED_PREFIX = "element not matched"


def new_query_id() -> str:
    """Return a fresh identifier, unique for the lifetime of the process."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class StyleQuery:
    """A request for the computed style of the element matched by a selector.

    ``property_name`` set means a single value is wanted; ``None`` asks for every
    computed property of the element.
    """

    id: str
    html: str
    css: tuple[str, ...]
    selector: str
    property_name: str | None = None
    pseudo_element: str | None = None

    @classmethod
    def create(
        cls,
        html: str,
        css: Iterable[str],
        selector: str,
        property_name: str | None = None,
        pseudo_element: str | None = None,
    ) -> StyleQuery:
        return cls(
            id=new_query_id(),
            html=html,
            css=tuple(css),
            selector=selector,
            property_name=property_name,
            pseudo_element=pseudo_element,
        )

    @property
    def wants_all_styles(self) -> bool:
        return self.property_name is None

    @property
    def document_key(self) -> tuple[str, tuple[str, ...]]:
        """Queries sharing a key can be answered from one document."""
        return (self.html, self.css)

    def to_dict(self) -> dict[str, str | None]:
        """The fields the reporting script needs to answer this query."""
        return {
            "id": self.id,
            "selector": self.selector,
            "property": self.property_name,
            "pseudo_element": self.pseudo_element,
        }


@dataclass(frozen=True)
class StyleResult:
    """Outcome of one style query, as reported by the engine."""

    id: str
    success: bool
    computed_value: str | None = None
    computed_styles: dict[str, str] | None = field(default=None, hash=False)
    error: str | None = None
    simulated: bool = False

    @classmethod
    def value(cls, query_id: str, value: str, *, simulated: bool = False) -> StyleResult:
        return cls(id=query_id, success=True, computed_value=value, simulated=simulated)

    @classmethod
    def styles(cls, query_id: str, styles: dict[str, str], *, simulated: bool = False) -> StyleResult:
        return cls(id=query_id, success=True, computed_styles=dict(styles), simulated=simulated)

    @classmethod
    def failure(cls, query_id: str, error: str, *, simulated: bool = False) -> StyleResult:
        return cls(id=query_id, success=False, error=error, simulated=simulated)

    @classmethod
    def not_matched(cls, query_id: str, selector: str, *, simulated: bool = False) -> StyleResult:
        return cls.failure(query_id, f"{NOT_MATCHED_PREFIX}: {selector}", simulated=simulated)

    @property
    def element_not_matched(self) -> bool:
        return not self.success and (self.error or "").startswith(NOT_MATCHED_PREFIX)

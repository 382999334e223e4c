"""StyleEngine: the caller-facing facade over the three resolution modes."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Sequence
from typing import Protocol

from style_oracle.assembler import assemble_batch_document, assemble_document
from style_oracle.config import EngineConfig, EngineMode
from style_oracle.daemon.supervisor import DaemonSupervisor
from style_oracle.driver import ProcessDriver, check_executable
from style_oracle.errors import (
    ConfigurationError,
    ElementNotMatchedError,
    StyleComputationError,
    StyleEngineError,
)
from style_oracle.events import EventEmitter
from style_oracle.extractor import extract_batch, extract_result
from style_oracle.model.query import StyleQuery, StyleResult
from style_oracle.simulated import SimulatedEngine

logger = logging.getLogger(__name__)

Outcome = StyleResult | StyleEngineError


class StyleBackend(Protocol):
    """How queries reach an answer."""

    def resolve(self, query: StyleQuery) -> StyleResult: ...
    def resolve_many(self, queries: Sequence[StyleQuery]) -> list[Outcome]: ...
    def close(self) -> None: ...


class SimulatedBackend:
    """Answers from heuristics; no process is ever started."""

    def __init__(self) -> None:
        self._engine = SimulatedEngine()

    def resolve(self, query: StyleQuery) -> StyleResult:
        return self._engine.resolve(query)

    def resolve_many(self, queries: Sequence[StyleQuery]) -> list[Outcome]:
        return [self._engine.resolve(q) for q in queries]

    def close(self) -> None:
        pass


class ProcessBackend:
    """One engine process per query, or per chunk of a batch."""

    def __init__(self, config: EngineConfig, driver: ProcessDriver) -> None:
        self.config = config
        self.driver = driver

    def resolve(self, query: StyleQuery) -> StyleResult:
        document = assemble_document(query, close_delay_ms=self.config.close_delay_ms)
        output = self.driver.run(document)
        return extract_result(output.text, query.id)

    def resolve_many(self, queries: Sequence[StyleQuery]) -> list[Outcome]:
        outcomes: dict[str, Outcome] = {}
        for chunk in _chunks(queries, self.config.batch_size):
            document = assemble_batch_document(chunk, close_delay_ms=self.config.close_delay_ms)
            try:
                output = self.driver.run(document)
            except StyleEngineError as exc:
                outcomes.update((q.id, exc) for q in chunk)
                continue
            outcomes.update(extract_batch(output.text, [q.id for q in chunk]))
        return [outcomes[q.id] for q in queries]

    def close(self) -> None:
        pass


class DaemonBackend:
    """Queries served by a long-lived engine through a supervisor."""

    def __init__(self, supervisor: DaemonSupervisor) -> None:
        self.supervisor = supervisor

    def resolve(self, query: StyleQuery) -> StyleResult:
        return self.supervisor.submit(query)

    def resolve_many(self, queries: Sequence[StyleQuery]) -> list[Outcome]:
        return self.supervisor.submit_many(list(queries))

    def close(self) -> None:
        self.supervisor.shutdown()


def _chunks(queries: Sequence[StyleQuery], size: int) -> Iterable[list[StyleQuery]]:
    """Consecutive runs of at most *size* queries sharing one document."""
    chunk: list[StyleQuery] = []
    for query in queries:
        if chunk and (len(chunk) >= size or chunk[0].document_key != query.document_key):
            yield chunk
            chunk = []
        chunk.append(query)
    if chunk:
        yield chunk


def require_success(result: StyleResult) -> StyleResult:
    """Return *result* if it succeeded, else raise the matching error."""
    if result.success:
        return result
    message = result.error or "Unknown error"
    if result.element_not_matched:
        raise ElementNotMatchedError(message, result=result)
    raise StyleComputationError(message, result=result)


class StyleEngine:
    """Computes CSS computed styles for elements of a markup fragment.

    Markup and stylesheets are held by the engine; each query snapshots
    them. The configured mode decides how queries are answered:

    - ``simulated``: heuristics only, results flagged ``simulated=True``.
    - ``real``: a fresh headless engine process per query.
    - ``optimized``: a long-lived engine daemon with batching.

    ``real`` and ``optimized`` never fall back to simulation: a missing
    executable is an error at construction time.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        event_emitter: EventEmitter | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.config.validate()
        self.event_emitter = event_emitter or EventEmitter()
        self._markup = ""
        self._stylesheets: list[str] = []
        self._backend = self._create_backend()

    def _create_backend(self) -> StyleBackend:
        mode = self.config.mode
        if mode == EngineMode.SIMULATED:
            logger.warning("Style engine running in simulated mode; results are heuristic, not engine output")
            return SimulatedBackend()

        configured = self.config.resolve_executable()
        if configured is None:
            raise ConfigurationError(
                f"Mode '{mode}' requires executable_path; none configured and no engine found on PATH"
            )
        executable = check_executable(configured)
        config = dataclasses.replace(self.config, executable_path=executable)
        logger.info("Style engine using %s in %s mode", executable, mode)

        if mode == EngineMode.REAL:
            driver = ProcessDriver(
                executable,
                timeout=config.timeout,
                engine_args=config.engine_args,
                temp_dir=config.temp_dir,
                event_emitter=self.event_emitter,
            )
            return ProcessBackend(config, driver)
        return DaemonBackend(DaemonSupervisor(config, event_emitter=self.event_emitter))

    # --- Document state ---

    @property
    def is_simulated(self) -> bool:
        return self.config.mode == EngineMode.SIMULATED

    @property
    def markup(self) -> str:
        return self._markup

    @property
    def stylesheets(self) -> tuple[str, ...]:
        return tuple(self._stylesheets)

    def set_markup(self, html: str) -> None:
        """Set the markup that queries run against."""
        self._markup = html

    def add_stylesheet(self, css: str) -> None:
        """Append a stylesheet; later sheets win on equal specificity."""
        self._stylesheets.append(css)

    def clear_stylesheets(self) -> None:
        self._stylesheets.clear()

    # --- Queries ---

    def new_query(
        self,
        selector: str,
        property_name: str | None = None,
        pseudo_element: str | None = None,
    ) -> StyleQuery:
        return StyleQuery.create(
            html=self._markup,
            css=self._stylesheets,
            selector=selector,
            property_name=property_name,
            pseudo_element=pseudo_element,
        )

    def query(self, query: StyleQuery) -> StyleResult:
        """Resolve *query* and return the raw result, failed or not."""
        result = self._backend.resolve(query)
        logger.debug("Query %s (%s) -> success=%s", query.id, query.selector, result.success)
        return result

    def get_computed_style(
        self,
        selector: str,
        property_name: str,
        pseudo_element: str | None = None,
    ) -> str:
        """Computed value of one property for the element matching *selector*."""
        result = require_success(self.query(self.new_query(selector, property_name, pseudo_element)))
        if result.computed_value is None:
            raise StyleComputationError("No computed value returned", result=result)
        return result.computed_value

    def get_all_computed_styles(
        self,
        selector: str,
        pseudo_element: str | None = None,
    ) -> dict[str, str]:
        """Every computed property of the element matching *selector*."""
        result = require_success(self.query(self.new_query(selector, None, pseudo_element)))
        if result.computed_styles is None:
            raise StyleComputationError("No computed styles returned", result=result)
        return dict(result.computed_styles)

    def compute_styles_batch(
        self,
        requests: Iterable[tuple[str, str | None]],
    ) -> list[Outcome]:
        """Resolve many ``(selector, property_name)`` requests at once.

        Outcomes come back in request order; a failure affects only its own
        entry.
        """
        queries = [self.new_query(selector, prop) for selector, prop in requests]
        return self._backend.resolve_many(queries)

    # --- Lifecycle ---

    def close(self) -> None:
        self._backend.close()

    def __enter__(self) -> StyleEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def compute_style(
    html: str,
    css: str,
    selector: str,
    property_name: str,
    config: EngineConfig | None = None,
) -> str:
    """One-shot helper: computed value of *property_name* for *selector*."""
    with StyleEngine(config) as engine:
        engine.set_markup(html)
        engine.add_stylesheet(css)
        return engine.get_computed_style(selector, property_name)

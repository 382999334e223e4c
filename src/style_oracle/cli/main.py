"""style-oracle CLI entry point: Click group with subcommands."""

from __future__ import annotations

import functools
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable

import click

from style_oracle import __version__
from style_oracle.config import EngineConfig, EngineMode
from style_oracle.engine import StyleEngine
from style_oracle.errors import ElementNotMatchedError, StyleEngineError

EXIT_NOT_MATCHED = 2


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def engine_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every command that builds an engine."""

    @click.option("--engine", "executable", default=None, help="Path to the engine executable")
    @click.option(
        "--mode",
        type=click.Choice([m.value for m in EngineMode]),
        default=EngineMode.REAL.value,
        show_default=True,
        help="How queries are resolved",
    )
    @click.option("--timeout", type=float, default=10.0, show_default=True, help="Seconds per engine run")
    @click.option("--batch-size", type=int, default=5, show_default=True, help="Queries per daemon round trip")
    @click.option("-v", "--verbose", count=True, help="Log more (repeat for debug output)")
    @functools.wraps(func)
    def wrapper(
        executable: str | None,
        mode: str,
        timeout: float,
        batch_size: int,
        verbose: int,
        **kwargs: Any,
    ) -> Any:
        _configure_logging(verbose)
        config = EngineConfig(
            executable_path=executable,
            mode=EngineMode(mode),
            timeout=timeout,
            batch_size=batch_size,
        )
        return func(config=config, **kwargs)

    return wrapper


def document_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Markup and stylesheet inputs."""
    func = click.option(
        "--css-file", "css_files", multiple=True, type=click.Path(exists=True, dir_okay=False),
        help="Stylesheet file (repeatable, applied in order after --css)",
    )(func)
    func = click.option("--css", "css", multiple=True, help="Stylesheet text (repeatable)")(func)
    func = click.option(
        "--html-file", type=click.Path(exists=True, dir_okay=False), default=None, help="Markup file",
    )(func)
    func = click.option("--html", default="", help="Markup text")(func)
    return func


def _load_document(engine: StyleEngine, html: str, html_file: str | None, css: tuple[str, ...],
                   css_files: tuple[str, ...]) -> None:
    if html_file:
        html = Path(html_file).read_text(encoding="utf-8")
    engine.set_markup(html)
    for sheet in css:
        engine.add_stylesheet(sheet)
    for path in css_files:
        engine.add_stylesheet(Path(path).read_text(encoding="utf-8"))


def _fail(exc: StyleEngineError) -> None:
    click.echo(f"Error: {exc}", err=True)
    sys.exit(EXIT_NOT_MATCHED if isinstance(exc, ElementNotMatchedError) else 1)


@click.group()
@click.version_option(version=__version__, prog_name="style-oracle")
def cli() -> None:
    """style-oracle - computed CSS values from a real browser engine."""


@cli.command()
@click.argument("selector")
@click.argument("property_name", metavar="PROPERTY")
@click.option("--pseudo", default=None, help="Pseudo-element, e.g. ::before")
@document_options
@engine_options
def compute(
    config: EngineConfig,
    selector: str,
    property_name: str,
    html: str,
    html_file: str | None,
    css: tuple[str, ...],
    css_files: tuple[str, ...],
    pseudo: str | None,
) -> None:
    """Print the computed value of PROPERTY for the element matching SELECTOR."""
    try:
        with StyleEngine(config) as engine:
            _load_document(engine, html, html_file, css, css_files)
            value = engine.get_computed_style(selector, property_name, pseudo)
    except StyleEngineError as exc:
        _fail(exc)
        return
    if engine.is_simulated:
        click.echo("Warning: simulated result, not engine output", err=True)
    click.echo(value)


@cli.command()
@click.argument("selector")
@click.option("--pseudo", default=None, help="Pseudo-element, e.g. ::before")
@document_options
@engine_options
def styles(
    config: EngineConfig,
    selector: str,
    html: str,
    html_file: str | None,
    css: tuple[str, ...],
    css_files: tuple[str, ...],
    pseudo: str | None,
) -> None:
    """Print every computed property of the element matching SELECTOR as JSON."""
    try:
        with StyleEngine(config) as engine:
            _load_document(engine, html, html_file, css, css_files)
            computed = engine.get_all_computed_styles(selector, pseudo)
    except StyleEngineError as exc:
        _fail(exc)
        return
    click.echo(json.dumps(computed, indent=2, sort_keys=True))


@cli.command()
@click.argument("requests_file", type=click.Path(exists=True, dir_okay=False))
@document_options
@engine_options
def batch(
    config: EngineConfig,
    requests_file: str,
    html: str,
    html_file: str | None,
    css: tuple[str, ...],
    css_files: tuple[str, ...],
) -> None:
    """Resolve many queries from REQUESTS_FILE, one JSON line each.

    Each line is an object with "selector" and an optional "property";
    one JSON result per line is printed in the same order.
    """
    requests: list[tuple[str, str | None]] = []
    for lineno, line in enumerate(Path(requests_file).read_text(encoding="utf-8").splitlines(), 1):
        if not line.strip():
            continue
        try:
            item = json.loads(line)
            requests.append((item["selector"], item.get("property")))
        except (ValueError, KeyError, TypeError) as exc:
            click.echo(f"Error: {requests_file}:{lineno}: invalid request: {exc}", err=True)
            sys.exit(1)

    failed = 0
    try:
        with StyleEngine(config) as engine:
            _load_document(engine, html, html_file, css, css_files)
            outcomes = engine.compute_styles_batch(requests)
    except StyleEngineError as exc:
        _fail(exc)
        return

    for (selector, prop), outcome in zip(requests, outcomes):
        record: dict[str, Any] = {"selector": selector, "property": prop}
        if isinstance(outcome, StyleEngineError):
            failed += 1
            record.update(success=False, error=str(outcome), error_type=type(outcome).__name__)
        elif not outcome.success:
            failed += 1
            record.update(success=False, error=outcome.error)
        elif outcome.computed_styles is not None:
            record.update(success=True, computed_styles=outcome.computed_styles)
        else:
            record.update(success=True, computed_value=outcome.computed_value)
        click.echo(json.dumps(record, sort_keys=True))

    if failed:
        sys.exit(1)


@cli.command()
@click.option("--engine", "executable", default=None, help="Path to the engine executable")
def check(executable: str | None) -> None:
    """Report whether an engine executable is available."""
    from style_oracle.driver import check_executable

    config = EngineConfig(executable_path=executable, mode=EngineMode.REAL)
    resolved = config.resolve_executable()
    try:
        path = check_executable(resolved)
    except StyleEngineError as exc:
        click.echo(f"Not available: {exc}", err=True)
        click.echo("Only simulated mode can be used until an engine is installed.", err=True)
        sys.exit(1)
    click.echo(f"OK: engine found at {path}")
    click.echo(
        "Note: optimized mode needs an engine that loads file:// URIs read from its stdin "
        "(a wrapper or patched build); stock headless Servo does not, so use --mode real with it."
    )

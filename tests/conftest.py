from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest

from style_oracle.config import EngineConfig, EngineMode

TESTS_DIR = Path(__file__).resolve().parent
SRC_DIR = TESTS_DIR.parent / "src"


@pytest.fixture
def fake_engine(tmp_path):
    """Path to an executable that behaves like a headless engine."""
    script = tmp_path / "fake-servo"
    script.write_text(
        "#!/bin/sh\n"
        f'PYTHONPATH="{SRC_DIR}${{PYTHONPATH:+:$PYTHONPATH}}"\n'
        "export PYTHONPATH\n"
        f'exec "{sys.executable}" "{TESTS_DIR / "fake_engine.py"}" "$@"\n'
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


@pytest.fixture
def engine_mode(monkeypatch):
    """Set the fake engine's behaviour for processes started by this test."""

    def _set(mode: str) -> None:
        monkeypatch.setenv("FAKE_ENGINE_MODE", mode)

    _set("normal")
    return _set


@pytest.fixture
def spawn_log(tmp_path, monkeypatch):
    """File the fake engine appends ``<pid> <uri>`` to on every start."""
    log = tmp_path / "spawns.log"
    monkeypatch.setenv("FAKE_ENGINE_LOG", str(log))
    return log


@pytest.fixture
def doc_dir(tmp_path):
    """Directory for temporary documents, so tests can check cleanup."""
    path = tmp_path / "docs"
    path.mkdir()
    return path


@pytest.fixture
def make_config(fake_engine, doc_dir):
    def _make(mode: EngineMode = EngineMode.REAL, **overrides) -> EngineConfig:
        values = dict(
            executable_path=fake_engine,
            mode=mode,
            timeout=10.0,
            close_delay_ms=0,
            startup_timeout=10.0,
            temp_dir=str(doc_dir),
        )
        values.update(overrides)
        return EngineConfig(**values)

    return _make


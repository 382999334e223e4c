"""Tests for the one-shot process driver, using the fake engine."""

import os
import time

import pytest

from helpers import make_query, read_spawns
from style_oracle.assembler import assemble_document
from style_oracle.driver import (
    CapturedOutput,
    ProcessDriver,
    check_executable,
    temporary_document,
)
from style_oracle.errors import EngineNotFoundError, EngineTimeoutError, SpawnFailureError
from style_oracle.events import EngineExitedEvent, EngineSpawnedEvent, EventEmitter
from style_oracle.extractor import extract_result


class TestCheckExecutable:
    def test_missing_path(self, tmp_path):
        with pytest.raises(EngineNotFoundError) as info:
            check_executable(str(tmp_path / "no-such-engine"))
        assert info.value.path == str(tmp_path / "no-such-engine")

    def test_none(self):
        with pytest.raises(EngineNotFoundError):
            check_executable(None)

    def test_not_executable(self, tmp_path):
        f = tmp_path / "plain.txt"
        f.write_text("x")
        f.chmod(0o644)
        with pytest.raises(EngineNotFoundError, match="not runnable"):
            check_executable(str(f))

    def test_directory(self, tmp_path):
        with pytest.raises(EngineNotFoundError):
            check_executable(str(tmp_path))

    def test_ok(self, fake_engine):
        assert check_executable(fake_engine) == fake_engine


class TestTemporaryDocument:
    def test_written_and_removed(self, tmp_path):
        with temporary_document("<p>hi</p>", str(tmp_path)) as path:
            assert path.read_text() == "<p>hi</p>"
            assert path.suffix == ".html"
        assert not path.exists()

    def test_removed_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with temporary_document("x", str(tmp_path)) as path:
                raise RuntimeError("boom")
        assert not path.exists()


def test_captured_text_joins_streams():
    assert CapturedOutput(stdout="a").text == "a"
    assert CapturedOutput(stdout="a", stderr="b").text == "a\nb"


class TestProcessDriver:
    def test_runs_document_and_captures_payload(self, fake_engine, engine_mode, doc_dir):
        q = make_query()
        driver = ProcessDriver(fake_engine, timeout=10, temp_dir=str(doc_dir))
        output = driver.run(assemble_document(q, close_delay_ms=0))
        assert output.exit_code == 0
        assert extract_result(output.text, q.id).computed_value == "rgb(255, 0, 0)"
        assert list(doc_dir.iterdir()) == []

    def test_payload_on_stderr_is_found(self, fake_engine, engine_mode, doc_dir):
        engine_mode("stderr")
        q = make_query()
        output = ProcessDriver(fake_engine, temp_dir=str(doc_dir)).run(assemble_document(q))
        assert output.stdout == ""
        assert extract_result(output.text, q.id).computed_value == "rgb(255, 0, 0)"

    def test_missing_executable_never_spawns(self, tmp_path, spawn_log):
        driver = ProcessDriver(str(tmp_path / "missing"))
        with pytest.raises(EngineNotFoundError):
            driver.run("<p></p>")
        assert read_spawns(spawn_log) == []

    def test_timeout_kills_engine_and_removes_document(self, fake_engine, engine_mode, doc_dir, spawn_log):
        engine_mode("hang")
        driver = ProcessDriver(fake_engine, timeout=0.5, temp_dir=str(doc_dir))
        start = time.monotonic()
        with pytest.raises(EngineTimeoutError) as info:
            driver.run(assemble_document(make_query()))
        assert time.monotonic() - start < 0.5 + 2.0 + 3.0
        assert info.value.timeout == 0.5
        assert list(doc_dir.iterdir()) == []
        [pid] = read_spawns(spawn_log)
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

    def test_emits_lifecycle_events(self, fake_engine, engine_mode, doc_dir):
        emitter = EventEmitter()
        seen = []
        emitter.on_all(seen.append)
        ProcessDriver(fake_engine, temp_dir=str(doc_dir), event_emitter=emitter).run(
            assemble_document(make_query())
        )
        assert [type(e) for e in seen] == [EngineSpawnedEvent, EngineExitedEvent]
        assert seen[0].pid == seen[1].pid
        assert seen[1].exit_code == 0

    def test_timeout_event_reason(self, fake_engine, engine_mode, doc_dir):
        engine_mode("hang")
        emitter = EventEmitter()
        exits = []
        emitter.subscribe(EngineExitedEvent, exits.append)
        with pytest.raises(EngineTimeoutError):
            ProcessDriver(fake_engine, timeout=0.3, temp_dir=str(doc_dir), event_emitter=emitter).run("x")
        assert [e.reason for e in exits] == ["timeout"]

    def test_crash_yields_output_without_payload(self, fake_engine, engine_mode, doc_dir):
        engine_mode("crash")
        output = ProcessDriver(fake_engine, temp_dir=str(doc_dir)).run(assemble_document(make_query()))
        assert output.exit_code == 3
        assert output.text == ""


class TestProcessDriverCleanup:
    def test_unexecutable_engine_is_spawn_failure(self, tmp_path, doc_dir):
        broken = tmp_path / "broken-servo"
        broken.write_bytes(b"\x00\x01\x02 not a program\n")
        broken.chmod(0o755)
        driver = ProcessDriver(str(broken), temp_dir=str(doc_dir))
        with pytest.raises(SpawnFailureError) as info:
            driver.run(assemble_document(make_query()))
        assert not isinstance(info.value, EngineNotFoundError)
        assert info.value.path == str(broken)
        assert isinstance(info.value.cause, OSError)
        assert list(doc_dir.iterdir()) == []

    def test_raising_spawn_listener_does_not_leak_engine(self, fake_engine, engine_mode, doc_dir):
        engine_mode("hang")
        emitter = EventEmitter()
        spawned = []

        def explode(event):
            spawned.append(event.pid)
            raise RuntimeError("listener failed")

        emitter.subscribe(EngineSpawnedEvent, explode)
        driver = ProcessDriver(fake_engine, timeout=30, temp_dir=str(doc_dir), event_emitter=emitter)
        with pytest.raises(RuntimeError, match="listener failed"):
            driver.run(assemble_document(make_query()))
        [pid] = spawned
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)
        assert list(doc_dir.iterdir()) == []

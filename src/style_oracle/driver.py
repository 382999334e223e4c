"""Process driver: renders one document in a fresh headless engine process."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from style_oracle.errors import EngineNotFoundError, EngineTimeoutError, SpawnFailureError
from style_oracle.events import EngineExitedEvent, EngineSpawnedEvent, EventEmitter
from style_oracle.extractor import RAW_EXCERPT_CHARS, excerpt

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SECONDS = 2.0


@dataclass(frozen=True)
class CapturedOutput:
    """Everything the engine wrote before it exited."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_ms: int = 0

    @property
    def text(self) -> str:
        """Both streams, stdout first; engines differ on where console output goes."""
        if not self.stderr:
            return self.stdout
        return f"{self.stdout}\n{self.stderr}"


def check_executable(path: str | None) -> str:
    """Return *path* if it names a runnable file, else raise EngineNotFoundError."""
    if not path:
        raise EngineNotFoundError("No engine executable configured", path=path)
    candidate = Path(path)
    if not candidate.exists():
        raise EngineNotFoundError(f"Engine executable not found: {path}", path=path)
    if not candidate.is_file() or not os.access(candidate, os.X_OK):
        raise EngineNotFoundError(f"Engine executable is not runnable: {path}", path=path)
    return str(candidate)


@contextmanager
def temporary_document(content: str, temp_dir: str | None = None) -> Iterator[Path]:
    """Write *content* to a temporary ``.html`` file, removed on exit."""
    fd, name = tempfile.mkstemp(prefix="style-oracle-", suffix=".html", dir=temp_dir)
    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        yield path
    finally:
        path.unlink(missing_ok=True)


def kill_process_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(os.getpgid(proc.pid), sig)
    except (ProcessLookupError, PermissionError):
        pass


def _decode(data: bytes | None) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


class ProcessDriver:
    """Runs the engine once per document.

    The engine is started headless in its own process group with the
    document's ``file://`` URI, and its output is captured until it exits or
    the timeout expires. On timeout the whole group is terminated (SIGTERM,
    then SIGKILL after a grace period) and reaped before the error is raised.
    The temporary document is removed on every path.
    """

    def __init__(
        self,
        executable_path: str,
        *,
        timeout: float = 10.0,
        engine_args: tuple[str, ...] = ("--headless",),
        temp_dir: str | None = None,
        event_emitter: EventEmitter | None = None,
    ) -> None:
        self.executable_path = executable_path
        self.timeout = timeout
        self.engine_args = engine_args
        self.temp_dir = temp_dir
        self.event_emitter = event_emitter or EventEmitter()

    def run(self, document: str) -> CapturedOutput:
        executable = check_executable(self.executable_path)
        with temporary_document(document, self.temp_dir) as path:
            return self._run_file(executable, path)

    def _run_file(self, executable: str, path: Path) -> CapturedOutput:
        command = [executable, *self.engine_args, path.as_uri()]
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            raise SpawnFailureError(
                f"Failed to start engine {executable}: {exc}", path=executable, cause=exc,
            ) from exc

        logger.debug("Spawned engine pid=%d for %s", proc.pid, path.name)
        try:
            self.event_emitter.emit(EngineSpawnedEvent(pid=proc.pid, executable=executable))
            stdout_bytes, stderr_bytes = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            stdout_bytes, stderr_bytes = self._terminate(proc)
            partial = CapturedOutput(stdout=_decode(stdout_bytes), stderr=_decode(stderr_bytes)).text
            logger.warning("Engine pid=%d timed out after %.1fs", proc.pid, self.timeout)
            self.event_emitter.emit(
                EngineExitedEvent(pid=proc.pid, exit_code=proc.returncode, reason="timeout")
            )
            raise EngineTimeoutError(
                f"Engine did not finish within {self.timeout:g}s",
                timeout=self.timeout,
                partial_output=excerpt(partial, RAW_EXCERPT_CHARS),
            ) from None
        finally:
            if proc.poll() is None:
                # A listener or the wait itself raised; never leave the engine running.
                self._terminate(proc)

        duration = int((time.monotonic() - start) * 1000)
        logger.debug("Engine pid=%d exited with %s after %dms", proc.pid, proc.returncode, duration)
        self.event_emitter.emit(EngineExitedEvent(pid=proc.pid, exit_code=proc.returncode))
        return CapturedOutput(
            stdout=_decode(stdout_bytes),
            stderr=_decode(stderr_bytes),
            exit_code=proc.returncode,
            duration_ms=duration,
        )

    def _terminate(self, proc: subprocess.Popen) -> tuple[bytes | None, bytes | None]:
        kill_process_group(proc, signal.SIGTERM)
        try:
            return proc.communicate(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            kill_process_group(proc, signal.SIGKILL)
            return proc.communicate()

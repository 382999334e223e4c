"""EngineHandle: one long-lived engine subprocess and its output pipes."""

from __future__ import annotations

import logging
import queue
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

from style_oracle.driver import TERMINATE_GRACE_SECONDS, kill_process_group

logger = logging.getLogger(__name__)

READER_JOIN_SECONDS = 1.0


def _pump(stream: IO[str], lines: queue.Queue[str | None], *, sentinel: bool) -> None:
    """Copy lines from a pipe into the handle's queue until EOF."""
    try:
        for line in stream:
            lines.put(line)
    except (OSError, ValueError):
        # Pipe closed underneath us during termination.
        pass
    finally:
        if sentinel:
            lines.put(None)


@dataclass
class EngineHandle:
    """A running engine process owned by exactly one supervisor.

    Reader threads copy stdout and stderr lines into ``lines``; a ``None``
    entry marks end of stdout, which means the engine has exited. Only the
    owning supervisor writes to stdin or consumes ``lines``.

    The engine must load each ``file://`` URI written to its stdin, one per
    line. Stock headless Servo only loads the URI on its command line, so
    daemon mode needs a wrapper or a build that reads stdin; with plain
    Servo every batch would time out. Use per-query mode there.
    """

    process: subprocess.Popen
    executable: str
    host_page: Path
    lines: queue.Queue[str | None] = field(default_factory=queue.Queue)
    started_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    queries_served: int = 0
    alive: bool = False
    _readers: list[threading.Thread] = field(default_factory=list, repr=False)

    @classmethod
    def spawn(cls, executable: str, engine_args: tuple[str, ...], host_page: Path) -> EngineHandle:
        """Start the engine on *host_page*. Raises OSError if it cannot start."""
        process = subprocess.Popen(
            [executable, *engine_args, host_page.as_uri()],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            start_new_session=True,
        )
        handle = cls(process=process, executable=executable, host_page=host_page)
        handle._start_readers()
        return handle

    def _start_readers(self) -> None:
        for stream, sentinel in ((self.process.stdout, True), (self.process.stderr, False)):
            reader = threading.Thread(
                target=_pump,
                args=(stream, self.lines),
                kwargs={"sentinel": sentinel},
                name=f"style-oracle-reader-{self.process.pid}",
                daemon=True,
            )
            reader.start()
            self._readers.append(reader)

    @property
    def pid(self) -> int:
        return self.process.pid

    def process_running(self) -> bool:
        return self.process.poll() is None

    def next_line(self, timeout: float) -> str | None:
        """Next output line; ``None`` at end of stdout. Raises queue.Empty on timeout."""
        line = self.lines.get(timeout=max(timeout, 0.0))
        if line is None:
            self.alive = False
        return line

    def drain(self) -> list[str]:
        """Discard output left over from earlier batches, noting an exit if seen."""
        stale: list[str] = []
        while True:
            try:
                line = self.lines.get_nowait()
            except queue.Empty:
                return stale
            if line is None:
                self.alive = False
            else:
                stale.append(line)

    def send(self, uris: list[str]) -> None:
        """Ask the engine to load each document URI. Raises OSError on a broken pipe."""
        stdin = self.process.stdin
        if stdin is None or stdin.closed:
            raise BrokenPipeError("engine stdin is closed")
        try:
            stdin.write("".join(f"{uri}\n" for uri in uris))
            stdin.flush()
        except ValueError as exc:
            raise BrokenPipeError(str(exc)) from exc

    def terminate(self) -> int | None:
        """Stop the process group, reap it, and remove the host page."""
        self.alive = False
        if self.process.stdin is not None:
            try:
                self.process.stdin.close()
            except OSError:
                pass
        if self.process.poll() is None:
            kill_process_group(self.process, signal.SIGTERM)
            try:
                self.process.wait(timeout=TERMINATE_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                kill_process_group(self.process, signal.SIGKILL)
                self.process.wait()
        for reader in self._readers:
            reader.join(timeout=READER_JOIN_SECONDS)
        self.host_page.unlink(missing_ok=True)
        logger.debug("Engine pid=%d terminated with %s", self.pid, self.process.returncode)
        return self.process.returncode

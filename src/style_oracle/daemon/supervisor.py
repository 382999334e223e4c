"""DaemonSupervisor: serves style queries from one long-lived engine process."""

from __future__ import annotations

import logging
import os
import queue
import tempfile
import threading
import time
from concurrent.futures import Future
from contextlib import ExitStack
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from style_oracle.assembler import assemble_batch_document, assemble_host_page, batch_id_for
from style_oracle.config import EngineConfig
from style_oracle.daemon.handle import EngineHandle
from style_oracle.driver import check_executable, temporary_document
from style_oracle.errors import (
    EngineShutdownError,
    EngineTimeoutError,
    SpawnFailureError,
    StyleEngineError,
)
from style_oracle.events import (
    BatchEndEvent,
    BatchStartEvent,
    DaemonStateChangedEvent,
    EngineExitedEvent,
    EngineSpawnedEvent,
    EventEmitter,
    QueryFailedEvent,
)
from style_oracle.extractor import RAW_EXCERPT_CHARS, excerpt, extract_batch
from style_oracle.model.query import StyleQuery, StyleResult
from style_oracle.model.wire import BATCH_END_TAG, READY_TAG

logger = logging.getLogger(__name__)

Outcome = StyleResult | StyleEngineError


class DaemonState(StrEnum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    READY = "ready"
    BUSY = "busy"
    DEAD = "dead"


@dataclass
class _Pending:
    query: StyleQuery
    future: Future


@dataclass
class _Group:
    """Queries answered by one document within a round trip."""

    batch_id: str
    queries: list[StyleQuery]
    finished: bool = False


class DaemonSupervisor:
    """Owns one engine subprocess and serialises every query through it.

    Callers block in :meth:`submit` while a single worker thread takes up to
    ``batch_size`` queued queries per round trip. Queries that arrive while a
    batch is in flight wait in a queue bounded by ``batch_size``; the
    supervisor never runs more than one engine process.

    State machine::

        UNINITIALIZED -> STARTING -> READY <-> BUSY
        any state -> DEAD (engine exited, I/O failure, timeout)
        DEAD -> STARTING (on the next batch)

    Restarts after a death are transparent: the query that finds the engine
    dead pays for the restart in latency and is then served normally.
    """

    def __init__(self, config: EngineConfig, *, event_emitter: EventEmitter | None = None) -> None:
        config.validate()
        self.config = config
        self.executable = check_executable(config.resolve_executable())
        self.event_emitter = event_emitter or EventEmitter()

        self._queue: queue.Queue[_Pending | None] = queue.Queue(maxsize=config.batch_size)
        self._state = DaemonState.UNINITIALIZED
        self._handle: EngineHandle | None = None
        self._engine_lock = threading.RLock()
        self._worker: threading.Thread | None = None
        self._worker_lock = threading.Lock()
        self._closed = False

    # --- Public API ---

    @property
    def state(self) -> DaemonState:
        return self._state

    def is_alive(self) -> bool:
        """Whether the engine process is believed to be running."""
        handle = self._handle
        return handle is not None and handle.alive and handle.process_running()

    def enqueue(self, query: StyleQuery) -> Future:
        """Queue *query*, blocking while the queue is full. Returns its future.

        Raises EngineShutdownError once the supervisor is shut down. A query
        admitted while shutdown is in progress is either served or failed
        with EngineShutdownError; its future always resolves.
        """
        future: Future = Future()
        pending = _Pending(query=query, future=future)
        with self._worker_lock:
            self._ensure_worker()
        self._queue.put(pending)
        with self._worker_lock:
            if self._closed and not self._worker_running():
                # Landed after shutdown drained the queue; drain again so
                # other blocked callers get in and fail too.
                self._fail_queued(self._shutdown_error())
        return future

    def submit(self, query: StyleQuery) -> StyleResult:
        """Serve one query, blocking until its result or typed error."""
        return self.enqueue(query).result()

    def submit_many(self, queries: list[StyleQuery]) -> list[Outcome]:
        """Serve several queries; outcomes are returned in input order."""
        futures = [self.enqueue(q) for q in queries]
        outcomes: list[Outcome] = []
        for future in futures:
            try:
                outcomes.append(future.result())
            except StyleEngineError as exc:
                outcomes.append(exc)
        return outcomes

    def restart(self) -> None:
        """Terminate any running engine and start a fresh one."""
        with self._engine_lock:
            self._discard_handle(reason="terminated")
            self._start()

    def shutdown(self) -> None:
        """Stop the worker and the engine. Queued queries fail with EngineShutdownError."""
        with self._worker_lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker
        if worker is not None and worker.is_alive():
            self._queue.put(None)
            worker.join()
        with self._worker_lock:
            self._fail_queued(self._shutdown_error())
        with self._engine_lock:
            self._discard_handle(reason="terminated")

    def stats(self) -> dict[str, Any]:
        handle = self._handle
        return {
            "state": str(self._state),
            "pid": handle.pid if handle else None,
            "alive": self.is_alive(),
            "queries_served": handle.queries_served if handle else 0,
            "uptime_s": round(time.monotonic() - handle.started_at, 3) if handle else 0.0,
        }

    def __enter__(self) -> DaemonSupervisor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # --- Worker ---

    def _ensure_worker(self) -> None:
        """Start the worker if needed. Caller holds ``_worker_lock``."""
        if self._closed:
            raise EngineShutdownError("Daemon supervisor has been shut down")
        if not self._worker_running():
            self._worker = threading.Thread(
                target=self._run, name="style-oracle-daemon", daemon=True,
            )
            self._worker.start()

    def _worker_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    @staticmethod
    def _shutdown_error() -> EngineShutdownError:
        return EngineShutdownError("Daemon supervisor shut down before the query was served")

    @staticmethod
    def _fail_pending(pending: _Pending, error: StyleEngineError) -> None:
        if not pending.future.done():
            pending.future.set_exception(error)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            batch = [item]
            stop = False
            while len(batch) < self.config.batch_size:
                try:
                    extra = self._queue.get_nowait()
                except queue.Empty:
                    break
                if extra is None:
                    stop = True
                    break
                batch.append(extra)
            self._serve(batch)
            if stop:
                return

    def _fail_queued(self, error: StyleEngineError) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not None:
                self._fail_pending(item, error)

    def _serve(self, batch: list[_Pending]) -> None:
        """Resolve every future in *batch*, whatever happens."""
        try:
            with self._engine_lock:
                self._ensure_ready()
                outcomes = self._round_trip([p.query for p in batch])
        except Exception as exc:
            if not isinstance(exc, StyleEngineError):
                logger.exception("Unexpected failure while serving a batch")
            if self._state == DaemonState.BUSY:
                self._set_state(DaemonState.READY if self.is_alive() else DaemonState.DEAD)
            for pending in batch:
                if not pending.future.done():
                    self._emit_failure(pending.query.id, exc)
                    pending.future.set_exception(exc)
            return

        for pending in batch:
            outcome = outcomes[pending.query.id]
            if isinstance(outcome, StyleResult):
                pending.future.set_result(outcome)
            else:
                self._emit_failure(pending.query.id, outcome)
                pending.future.set_exception(outcome)

    # --- Lifecycle ---

    def _set_state(self, state: DaemonState) -> None:
        previous = self._state
        if previous == state:
            return
        self._state = state
        logger.debug("Daemon state %s -> %s", previous, state)
        self.event_emitter.emit(DaemonStateChangedEvent(previous=str(previous), current=str(state)))

    def _ensure_ready(self) -> None:
        handle = self._handle
        if handle is not None:
            stale = handle.drain()
            if stale:
                logger.debug("Discarded %d stale engine output line(s)", len(stale))
            if not (handle.alive and handle.process_running()):
                logger.warning("Engine pid=%d is no longer running", handle.pid)
                self._discard_handle(reason="exited")
        if self._state in (DaemonState.UNINITIALIZED, DaemonState.DEAD):
            self._start()

    def _discard_handle(self, *, reason: str) -> None:
        handle = self._handle
        self._handle = None
        if handle is not None:
            exit_code = handle.terminate()
            self.event_emitter.emit(EngineExitedEvent(pid=handle.pid, exit_code=exit_code, reason=reason))
            self._set_state(DaemonState.DEAD)

    def _start(self) -> None:
        self._set_state(DaemonState.STARTING)
        fd, name = tempfile.mkstemp(prefix="style-oracle-host-", suffix=".html", dir=self.config.temp_dir)
        host_page = Path(name)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(assemble_host_page())

        try:
            handle = EngineHandle.spawn(self.executable, self.config.engine_args, host_page)
        except OSError as exc:
            host_page.unlink(missing_ok=True)
            self._set_state(DaemonState.DEAD)
            raise SpawnFailureError(
                f"Failed to start engine daemon {self.executable}: {exc}",
                path=self.executable,
                cause=exc,
            ) from exc

        try:
            self.event_emitter.emit(EngineSpawnedEvent(pid=handle.pid, executable=self.executable, daemon=True))
            self._await_ready(handle)
        except BaseException:
            handle.terminate()
            self._set_state(DaemonState.DEAD)
            raise

        handle.alive = True
        self._handle = handle
        logger.info("Engine daemon ready (pid=%d)", handle.pid)
        self._set_state(DaemonState.READY)

    def _await_ready(self, handle: EngineHandle) -> None:
        deadline = time.monotonic() + self.config.startup_timeout
        seen: list[str] = []
        while True:
            try:
                line = handle.next_line(deadline - time.monotonic())
            except queue.Empty:
                raise SpawnFailureError(
                    f"Engine daemon did not report ready within {self.config.startup_timeout:g}s",
                    path=self.executable,
                ) from None
            if line is None:
                raise SpawnFailureError(
                    "Engine daemon exited before reporting ready. "
                    f"Output: {excerpt(''.join(seen), RAW_EXCERPT_CHARS)!r}",
                    path=self.executable,
                )
            if READY_TAG in line:
                return
            seen.append(line)

    # --- Round trip ---

    def _round_trip(self, queries: list[StyleQuery]) -> dict[str, Outcome]:
        groups: dict[tuple[str, tuple[str, ...]], _Group] = {}
        for query in queries:
            key = query.document_key
            if key not in groups:
                groups[key] = _Group(batch_id="", queries=[])
            groups[key].queries.append(query)
        for group in groups.values():
            group.batch_id = batch_id_for(group.queries)

        self._set_state(DaemonState.BUSY)
        start = time.monotonic()
        for group in groups.values():
            self.event_emitter.emit(BatchStartEvent(batch_id=group.batch_id, size=len(group.queries)))

        with ExitStack() as stack:
            uris = []
            for group in groups.values():
                document = assemble_batch_document(
                    group.queries,
                    batch_id=group.batch_id,
                    close_delay_ms=self.config.close_delay_ms,
                    exit_after_report=False,
                )
                path = stack.enter_context(temporary_document(document, self.config.temp_dir))
                uris.append(path.as_uri())

            self._send(uris)
            captured, timed_out = self._collect(groups)

        handle = self._handle
        text = "".join(captured)
        outcomes = extract_batch(text, [q.id for q in queries])

        if timed_out:
            error = EngineTimeoutError(
                f"Engine daemon did not finish the batch within {self.config.timeout:g}s",
                timeout=self.config.timeout,
                partial_output=excerpt(text, RAW_EXCERPT_CHARS),
            )
            for group in groups.values():
                if group.finished:
                    continue
                for query in group.queries:
                    if not isinstance(outcomes[query.id], StyleResult):
                        outcomes[query.id] = error
            # The stream may still carry this batch's output; start clean.
            self._discard_handle(reason="timeout")
        elif handle is None or not handle.alive:
            self._discard_handle(reason="exited")
        else:
            handle.queries_served += len(queries)
            handle.last_used = time.monotonic()
            self._set_state(DaemonState.READY)

        duration = int((time.monotonic() - start) * 1000)
        failed_total = 0
        for group in groups.values():
            failed = sum(1 for q in group.queries if not isinstance(outcomes[q.id], StyleResult))
            failed_total += failed
            self.event_emitter.emit(BatchEndEvent(
                batch_id=group.batch_id,
                succeeded=len(group.queries) - failed,
                failed=failed,
                duration_ms=duration,
            ))
        logger.debug(
            "Round trip of %d queries finished in %dms (%d failed)", len(queries), duration, failed_total,
        )
        return outcomes

    def _send(self, uris: list[str]) -> None:
        """Write the batch to the engine, restarting it once on a broken pipe."""
        assert self._handle is not None  # noqa: S101
        try:
            self._handle.send(uris)
            return
        except OSError as exc:
            logger.warning("Engine pipe broken (%s); restarting daemon", exc)
        self._discard_handle(reason="exited")
        self._start()
        self._set_state(DaemonState.BUSY)
        try:
            self._handle.send(uris)
        except OSError as exc:
            self._discard_handle(reason="exited")
            raise SpawnFailureError(
                f"Engine daemon rejected input after restart: {exc}", path=self.executable, cause=exc,
            ) from exc

    def _collect(self, groups: dict[Any, _Group]) -> tuple[list[str], bool]:
        """Read output until every group's end marker, EOF, or the timeout.

        Returns the captured lines and whether the timeout expired.
        """
        handle = self._handle
        assert handle is not None  # noqa: S101
        by_id = {group.batch_id: group for group in groups.values()}
        remaining = set(by_id)
        captured: list[str] = []
        deadline = time.monotonic() + self.config.timeout

        while remaining:
            try:
                line = handle.next_line(deadline - time.monotonic())
            except queue.Empty:
                return captured, True
            if line is None:
                logger.warning("Engine pid=%d exited during a batch", handle.pid)
                return captured, False
            captured.append(line)
            _, tag, batch_id = line.partition(BATCH_END_TAG)
            if tag and batch_id.strip() in remaining:
                remaining.discard(batch_id.strip())
                by_id[batch_id.strip()].finished = True
        return captured, False

    def _emit_failure(self, query_id: str, error: Exception) -> None:
        self.event_emitter.emit(QueryFailedEvent(
            query_id=query_id, error=str(error), error_type=type(error).__name__,
        ))

"""Lifecycle events emitted by the engine drivers and the daemon supervisor."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable


# --- Event dataclasses ---


@dataclass(frozen=True)
class EngineSpawnedEvent:
    pid: int
    executable: str
    daemon: bool = False


@dataclass(frozen=True)
class EngineExitedEvent:
    pid: int
    exit_code: int | None
    reason: str = "exited"  # "exited", "timeout", "terminated"


@dataclass(frozen=True)
class DaemonStateChangedEvent:
    previous: str
    current: str


@dataclass(frozen=True)
class BatchStartEvent:
    batch_id: str
    size: int


@dataclass(frozen=True)
class BatchEndEvent:
    batch_id: str
    succeeded: int
    failed: int
    duration_ms: int


@dataclass(frozen=True)
class QueryFailedEvent:
    query_id: str
    error: str
    error_type: str


Listener = Callable[[Any], None]


class EventEmitter:
    """Fans lifecycle events out to listeners on the emitting thread.

    Daemon events are emitted from the supervisor's worker thread, so a
    listener that blocks stalls the daemon. Listeners registered while an
    event is being dispatched receive only later events. A listener that
    raises stops dispatch and the exception reaches the emitter; engine
    processes are cleaned up on that path like any other failure.
    """

    def __init__(self) -> None:
        # Key None holds the listeners registered with on_all.
        self._listeners: dict[type | None, list[Listener]] = {}

    def subscribe(self, event_type: type, callback: Listener) -> None:
        self._listeners.setdefault(event_type, []).append(callback)

    def on_all(self, callback: Listener) -> None:
        """Receive every event, ahead of type-specific listeners."""
        self._listeners.setdefault(None, []).append(callback)

    def emit(self, event: Any) -> None:
        targets = [*self._listeners.get(None, ()), *self._listeners.get(type(event), ())]
        for callback in targets:
            callback(event)

"""Tests for the lifecycle event emitter."""

import pytest

from style_oracle.events import (
    BatchEndEvent,
    BatchStartEvent,
    EngineSpawnedEvent,
    EventEmitter,
)


class TestEventEmitter:
    def test_subscribe_by_type(self):
        emitter = EventEmitter()
        starts = []
        emitter.subscribe(BatchStartEvent, starts.append)
        emitter.emit(BatchStartEvent(batch_id="b1", size=2))
        emitter.emit(BatchEndEvent(batch_id="b1", succeeded=2, failed=0, duration_ms=5))
        assert starts == [BatchStartEvent(batch_id="b1", size=2)]

    def test_on_all_sees_everything_first(self):
        emitter = EventEmitter()
        order = []
        emitter.subscribe(EngineSpawnedEvent, lambda e: order.append("typed"))
        emitter.on_all(lambda e: order.append("all"))
        emitter.emit(EngineSpawnedEvent(pid=1, executable="servo"))
        assert order == ["all", "typed"]

    def test_registration_order(self):
        emitter = EventEmitter()
        order = []
        emitter.on_all(lambda e: order.append(1))
        emitter.on_all(lambda e: order.append(2))
        emitter.emit(EngineSpawnedEvent(pid=1, executable="servo"))
        assert order == [1, 2]

    def test_no_listeners(self):
        EventEmitter().emit(EngineSpawnedEvent(pid=1, executable="servo"))

    def test_listener_added_during_dispatch_sees_only_later_events(self):
        emitter = EventEmitter()
        late = []

        def register_late(event):
            emitter.on_all(late.append)

        emitter.on_all(register_late)
        first = EngineSpawnedEvent(pid=1, executable="servo")
        second = EngineSpawnedEvent(pid=2, executable="servo")
        emitter.emit(first)
        assert late == []
        emitter.emit(second)
        assert late == [second]

    def test_listener_exception_propagates(self):
        emitter = EventEmitter()
        calls = []

        def fail(event):
            raise ValueError("bad listener")

        emitter.on_all(fail)
        emitter.subscribe(EngineSpawnedEvent, calls.append)
        with pytest.raises(ValueError, match="bad listener"):
            emitter.emit(EngineSpawnedEvent(pid=1, executable="servo"))
        assert calls == []

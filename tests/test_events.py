import dataclasses

import pytest

from replaydesk.events import DomainEvent, EventDispatcher, event
from replaydesk.session.events import ErrorRaised, StatusChanged
from replaydesk.types import Mode


@event
class PingEvent(DomainEvent):
    """Event used by these tests."""

    message: str


@event
class LoudPing(PingEvent):
    volume: int


@event
class CountEvent(DomainEvent):
    value: int


class TestDomainEvent:

    def test_timestamp_defaults_to_now(self):
        ev = PingEvent(message="hi")
        assert ev.timestamp > 0

    def test_events_are_frozen(self):
        ev = PingEvent(message="hi")
        with pytest.raises(dataclasses.FrozenInstanceError):
            ev.message = "changed"

    def test_timestamp_can_be_given(self):
        assert PingEvent(message="hi", timestamp=5).timestamp == 5


class TestEventDispatcher:

    def test_init(self):
        dispatcher = EventDispatcher()
        assert dispatcher._handlers == {}

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        dispatcher = EventDispatcher()
        calls = []

        def first(ev):
            calls.append(("first", ev.message))

        async def second(ev):
            calls.append(("second", ev.message))

        dispatcher.subscribe(PingEvent, first)
        dispatcher.subscribe(PingEvent, second)
        await dispatcher.publish(PingEvent(message="hello"))

        assert calls == [("first", "hello"), ("second", "hello")]

    @pytest.mark.asyncio
    async def test_only_matching_type_receives(self):
        dispatcher = EventDispatcher()
        pings, counts = [], []
        dispatcher.subscribe(PingEvent, pings.append)
        dispatcher.subscribe(CountEvent, counts.append)

        await dispatcher.publish(CountEvent(value=3))

        assert pings == []
        assert [c.value for c in counts] == [3]

    @pytest.mark.asyncio
    async def test_base_class_subscription_receives_subclasses(self):
        dispatcher = EventDispatcher()
        everything, loud = [], []
        dispatcher.subscribe(DomainEvent, everything.append)
        dispatcher.subscribe(LoudPing, loud.append)

        await dispatcher.publish(LoudPing(message="hey", volume=11))
        await dispatcher.publish(CountEvent(value=1))

        assert len(everything) == 2
        assert len(loud) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_via_returned_callable(self):
        dispatcher = EventDispatcher()
        seen = []
        unsubscribe = dispatcher.subscribe(PingEvent, seen.append)

        await dispatcher.publish(PingEvent(message="one"))
        unsubscribe()
        await dispatcher.publish(PingEvent(message="two"))

        assert [e.message for e in seen] == ["one"]

    def test_unsubscribe_unknown_handler_is_noop(self):
        dispatcher = EventDispatcher()
        dispatcher.unsubscribe(PingEvent, print)

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self, caplog):
        dispatcher = EventDispatcher()
        seen = []

        def broken(ev):
            raise RuntimeError("boom")

        async def broken_async(ev):
            raise ValueError("async boom")

        dispatcher.subscribe(PingEvent, broken)
        dispatcher.subscribe(PingEvent, broken_async)
        dispatcher.subscribe(PingEvent, seen.append)

        await dispatcher.publish(PingEvent(message="still delivered"))

        assert len(seen) == 1
        assert "broken" in caplog.text

    @pytest.mark.asyncio
    async def test_session_events_dispatch(self):
        dispatcher = EventDispatcher()
        seen = []
        dispatcher.subscribe(ErrorRaised, seen.append)

        await dispatcher.publish(StatusChanged(message="ignored"))
        await dispatcher.publish(ErrorRaised(mode=Mode.TRAINING, kind="StepFailure", message="x"))

        assert [e.kind for e in seen] == ["StepFailure"]

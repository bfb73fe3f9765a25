"""Tests for entity event parsing and dispatch."""

import asyncio
import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from core.exceptions import NotFoundError, ValidationError
from triggers.event_bus import EntityEvent, EntityEventListener, parse_event


def _listener(callback):
    return EntityEventListener(channel="crm.entity_events", redis_url="redis://unused", callback=callback)


class FakePubSub:
    """Pub/sub stand-in driven by a script of subscribe and listen behaviour."""

    def __init__(self, refuse=False, messages=(), drop=False):
        self.refuse = refuse
        self.messages = list(messages)
        self.drop = drop
        self.closed = False

    async def subscribe(self, channel):
        if self.refuse:
            raise RedisConnectionError("Connection refused")

    async def listen(self):
        yield {"type": "subscribe", "data": 1}
        for data in self.messages:
            yield {"type": "message", "data": data}
        if self.drop:
            raise RedisConnectionError("Connection reset by peer")
        await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


class FakeRedis:

    def __init__(self, pubsub):
        self._pubsub = pubsub
        self.closed = False

    def pubsub(self):
        return self._pubsub

    async def aclose(self):
        self.closed = True


_EVENT = json.dumps({"workflow_id": "wf-1", "entity_id": "s-1", "entity_type": "student_profile"})


@pytest.mark.unit
class TestParseEvent:

    def test_parses_json_bytes(self):
        raw = json.dumps({
            "workflow_id": "wf-1",
            "entity_id": "student-1",
            "entity_type": "student_profile",
            "event_data": {"status": "at_risk"},
        }).encode()

        event = parse_event(raw)

        assert event == EntityEvent("wf-1", "student-1", "student_profile", {"status": "at_risk"})

    def test_event_data_is_optional(self):
        event = parse_event({"workflow_id": "wf-1", "entity_id": "a-1", "entity_type": "application"})
        assert event.event_data == {}

    def test_missing_fields_are_named(self):
        with pytest.raises(ValidationError, match="entity_id, entity_type"):
            parse_event({"workflow_id": "wf-1"})

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", b"\xff\xfe"])
    def test_malformed_payloads(self, raw):
        with pytest.raises(ValidationError):
            parse_event(raw)

    def test_event_data_must_be_an_object(self):
        with pytest.raises(ValidationError, match="event_data"):
            parse_event({"workflow_id": "w", "entity_id": "e", "entity_type": "t", "event_data": [1]})


@pytest.mark.unit
class TestHandleMessage:

    async def test_dispatches_to_callback(self):
        received = []

        async def callback(event):
            received.append(event)
            return {"triggered": True}

        result = await _listener(callback).handle_message(
            '{"workflow_id": "wf-1", "entity_id": "s-1", "entity_type": "student_profile"}'
        )

        assert result == {"triggered": True}
        assert received[0].workflow_id == "wf-1"

    async def test_malformed_message_is_dropped(self):
        async def callback(event):
            raise AssertionError("should not be called")

        assert await _listener(callback).handle_message("{broken") is None

    async def test_missing_record_is_dropped(self):
        async def callback(event):
            raise NotFoundError("Workflow 'wf-1' not found")

        result = await _listener(callback).handle_message(
            {"workflow_id": "wf-1", "entity_id": "s-1", "entity_type": "student_profile"}
        )
        assert result is None

    async def test_other_errors_propagate(self):
        async def callback(event):
            raise RuntimeError("database down")

        with pytest.raises(RuntimeError):
            await _listener(callback).handle_message(
                {"workflow_id": "wf-1", "entity_id": "s-1", "entity_type": "student_profile"}
            )

    async def test_end_to_end_with_engine(self, engine, make_automation, student, load_execution):
        automation_id = await make_automation([{"action_type": "update_lead_score", "execution_order": 1, "config": {"delta": 10}}])
        listener = _listener(
            lambda e: engine.trigger(e.workflow_id, e.entity_id, e.entity_type, e.event_data)
        )

        summary = await listener.handle_message(json.dumps({
            "workflow_id": automation_id,
            "entity_id": student["id"],
            "entity_type": "student_profile",
        }))

        assert summary["status"] == "completed"
        execution, log = await load_execution(summary["execution_id"])
        assert log[0].status.value == "completed"


@pytest.mark.unit
class TestReconnect:

    async def _run_until_delivered(self, scripts):
        clients = [FakeRedis(p) for p in scripts]
        pending = list(clients)
        delivered = asyncio.Event()

        async def callback(event):
            delivered.set()

        listener = EntityEventListener(
            channel="crm.entity_events",
            redis_url="redis://unused",
            callback=callback,
            client_factory=lambda: pending.pop(0),
            retry_delay=0.01,
            max_retry_delay=0.02,
        )
        listener.start()
        try:
            await asyncio.wait_for(delivered.wait(), timeout=2)
        finally:
            await listener.stop()
        return clients, pending

    async def test_reconnects_after_refused_connections(self):
        clients, pending = await self._run_until_delivered([
            FakePubSub(refuse=True),
            FakePubSub(refuse=True),
            FakePubSub(refuse=True),
            FakePubSub(messages=[_EVENT]),
        ])

        assert pending == []
        assert all(c.closed and c.pubsub().closed for c in clients)

    async def test_resubscribes_after_a_dropped_connection(self):
        clients, pending = await self._run_until_delivered([
            FakePubSub(drop=True),
            FakePubSub(messages=[_EVENT]),
        ])

        assert pending == []
        assert clients[0].closed

    async def test_stop_cancels_a_waiting_listener(self):
        listener = EntityEventListener(
            channel="crm.entity_events",
            redis_url="redis://unused",
            callback=lambda e: None,
            client_factory=lambda: FakeRedis(FakePubSub()),
        )
        listener.start()
        await asyncio.sleep(0.01)

        assert listener.is_running
        await listener.stop()
        assert not listener.is_running

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.auth.security import create_access_token
from app.events.broker import SUBSCRIBER_QUEUE_SIZE, EventBroker, event_broker
from app.main import app


def _token() -> str:
    return create_access_token(1, "ADMIN")


@pytest.mark.asyncio
async def test_publish_assigns_increasing_ids() -> None:
    broker = EventBroker(buffer_size=10)
    first = await broker.publish("lead.created", {"student_id": 1})
    second = await broker.publish_lead_event(2, "decided", {"decision_state": "ACCEPTED"})

    assert first["id"] == 1
    assert second["id"] == 2
    assert second["type"] == "lead.decided"
    assert second["data"] == {"student_id": 2, "decision_state": "ACCEPTED"}
    assert second["timestamp"]
    assert broker.last_event_id == 2


@pytest.mark.asyncio
async def test_subscriber_receives_live_events() -> None:
    broker = EventBroker()
    queue, backlog = await broker.subscribe()
    assert backlog == []
    assert broker.get_subscriber_count() == 1

    event = await broker.publish_lead_event(7, "payment_confirmed")
    assert queue.get_nowait() == event

    await broker.unsubscribe(queue)
    assert broker.get_subscriber_count() == 0
    await broker.publish_lead_event(7, "decided")
    assert queue.empty()


@pytest.mark.asyncio
async def test_replay_is_bounded_by_buffer() -> None:
    broker = EventBroker(buffer_size=3)
    for i in range(5):
        await broker.publish("lead.created", {"student_id": i})

    queue, backlog = await broker.subscribe(last_event_id=0)
    assert [e["id"] for e in backlog] == [3, 4, 5]

    _, backlog = await broker.subscribe(last_event_id=4)
    assert [e["id"] for e in backlog] == [5]
    assert queue.empty()


@pytest.mark.asyncio
async def test_slow_subscriber_drops_events() -> None:
    broker = EventBroker()
    queue, _ = await broker.subscribe()
    for i in range(SUBSCRIBER_QUEUE_SIZE + 5):
        await broker.publish("lead.created", {"student_id": i})

    assert queue.qsize() == SUBSCRIBER_QUEUE_SIZE
    # Dropped events can still be replayed
    _, backlog = await broker.subscribe(last_event_id=SUBSCRIBER_QUEUE_SIZE)
    assert [e["id"] for e in backlog] == list(range(SUBSCRIBER_QUEUE_SIZE + 1, SUBSCRIBER_QUEUE_SIZE + 6))


def test_ws_rejects_invalid_token() -> None:
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws?token=not-a-jwt"):
            pass
    assert exc_info.value.code == 1008

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws"):
            pass


def test_ws_replays_missed_events_and_answers_ping() -> None:
    base = event_broker.last_event_id
    for i in range(3):
        asyncio.run(event_broker.publish_lead_event(100 + i, "created"))

    client = TestClient(app)
    with client.websocket_connect(f"/ws?token={_token()}&last_event_id={base + 1}") as ws:
        first = ws.receive_json()
        second = ws.receive_json()
        assert [first["id"], second["id"]] == [base + 2, base + 3]
        assert second["type"] == "lead.created"
        assert second["data"] == {"student_id": 102}

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

    assert event_broker.get_subscriber_count() == 0


@pytest.mark.asyncio
async def test_resume_from_another_epoch_replays_buffer() -> None:
    broker = EventBroker(buffer_size=10)
    for i in range(3):
        await broker.publish("lead.created", {"student_id": i})

    _, backlog = await broker.subscribe(last_event_id=2, epoch=broker.epoch)
    assert [e["id"] for e in backlog] == [3]
    assert backlog[0]["epoch"] == broker.epoch

    _, backlog = await broker.subscribe(last_event_id=40, epoch="previous-process")
    assert [e["id"] for e in backlog] == [1, 2, 3]

    assert EventBroker().epoch != broker.epoch

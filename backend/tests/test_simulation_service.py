import asyncio
import json

import pytest

from app.errors import ScenarioNotFoundError
from conftest import FakeWebSocket


def _decoded(ws):
    return [json.loads(item) for item in ws.sent]


async def _joined_session(service, *sockets):
    session = service.create_session("test", "ops", meta={"postingId": "p-1"})
    for ws in sockets:
        await service.join(session.id, ws)
    return session


@pytest.mark.asyncio
async def test_create_session_rejects_unknown_reference(ops_service):
    with pytest.raises(ScenarioNotFoundError):
        ops_service.create_session("nope", "ops")


@pytest.mark.asyncio
async def test_join_sends_snapshot_only_to_joiner(ops_service):
    first = FakeWebSocket()
    second = FakeWebSocket()
    session = await _joined_session(ops_service, first)
    await ops_service.join(session.id, second)

    assert len(first.sent) == 1
    snapshot = _decoded(second)[0]
    assert snapshot["type"] == "session:state"
    assert snapshot["started"] is False
    assert [c["name"] for c in snapshot["channels"]] == ["ops", "notes", "debrief"]
    assert session.meta["postingId"] == "p-1"

    assert await ops_service.join("sess_missing", FakeWebSocket()) is None


@pytest.mark.asyncio
async def test_start_is_idempotent_and_broadcasts_in_store_order(ops_service):
    ws = FakeWebSocket()
    session = await _joined_session(ops_service, ws)

    assert await ops_service.start_session(session.id) is True
    assert await ops_service.start_session(session.id) is True
    assert await ops_service.start_session("sess_missing") is False

    events = _decoded(ws)[1:]
    assert [e["type"] for e in events] == ["session:started", "task:assign", "chat:append", "chat:append"]
    assert events[1]["channel"] == "notes"
    assert [e["text"] for e in events if e["type"] == "chat:append"] == ["U0", "brief me"]


@pytest.mark.asyncio
async def test_candidate_message_fans_out_to_every_client(ops_service):
    candidate = FakeWebSocket()
    observer = FakeWebSocket()
    session = await _joined_session(ops_service, candidate, observer)
    await ops_service.start_session(session.id)

    payloads = await ops_service.candidate_message(session.id, "ops", "p95 is 500ms")

    assert [(p["type"], p.get("sender"), p.get("text")) for p in payloads] == [
        ("chat:append", "candidate", "p95 is 500ms"),
        ("chat:append", "sre", "U1"),
        ("chat:append", "sre", "S1 says"),
        ("task:assign", None, None),
    ]
    assert _decoded(candidate)[-4:] == payloads
    assert _decoded(observer)[-4:] == payloads

    history = session.channel("ops").history
    broadcast_ts = [p["ts"] for p in payloads if p["type"] == "chat:append"]
    assert broadcast_ts == [m.ts for m in history[-3:]]


@pytest.mark.asyncio
async def test_founder_injection_bypasses_the_flow(ops_service):
    ws = FakeWebSocket()
    session = await _joined_session(ops_service, ws)
    await ops_service.start_session(session.id)

    payloads = await ops_service.founder_inject(session.id, "ops", "p95 please")

    assert len(payloads) == 1
    assert payloads[0]["sender"] == "founder"
    assert payloads[0]["text"] == "(Founder) p95 please"
    assert ops_service.engine.current_step(session, "ops").id == "S0"


@pytest.mark.asyncio
async def test_lock_channel_is_broadcast_and_advisory(ops_service):
    ws = FakeWebSocket()
    session = await _joined_session(ops_service, ws)
    await ops_service.start_session(session.id)

    locked = await ops_service.lock_channel(session.id, "ops")
    assert locked == [{"type": "channel:locked", "session_id": session.id, "channel": "ops"}]
    assert await ops_service.lock_channel(session.id, "missing") == []

    # the engine still accepts input on a locked channel
    payloads = await ops_service.candidate_message(session.id, "ops", "p95")
    assert len(payloads) == 4
    assert ops_service.snapshot(session.id)["locked"] == {"ops": True}


@pytest.mark.asyncio
async def test_task_submission_grades_then_reenters_referencing_channels(ops_service):
    ws = FakeWebSocket()
    session = await _joined_session(ops_service, ws)
    await ops_service.start_session(session.id)
    await ops_service.candidate_message(session.id, "ops", "p95")

    wrong = await ops_service.submit_task(session.id, "t-mcq", {"choice": "A"})
    assert wrong == [{"type": "task:result", "session_id": session.id, "task_id": "t-mcq", "score": 0, "detail": "Correct: B"}]

    right = await ops_service.submit_task(session.id, "t-mcq", {"choice": "B"})
    assert right[0]["score"] == 5
    assert [p["text"] for p in right[1:]] == ["right", "S2 says"]

    results = ops_service.results(session.id)
    assert [r["score"] for r in results] == [0, 5]
    assert results[1]["answer"] == {"choice": "B"}


@pytest.mark.asyncio
async def test_unknown_task_is_graded_zero_without_flow_changes(ops_service):
    ws = FakeWebSocket()
    session = await _joined_session(ops_service, ws)

    payloads = await ops_service.submit_task(session.id, "t-ghost", {"text": "hi"})
    assert payloads[0]["score"] == 0
    assert payloads[0]["detail"] == "Unknown task"
    assert len(payloads) == 1


@pytest.mark.asyncio
async def test_stale_events_are_absorbed(ops_service):
    assert await ops_service.candidate_message("sess_missing", "ops", "hi") == []
    assert await ops_service.founder_inject("sess_missing", "ops", "hi") == []
    assert await ops_service.lock_channel("sess_missing", "ops") == []
    assert await ops_service.submit_task("sess_missing", "t-mcq", {}) == []

    session = await _joined_session(ops_service)
    assert await ops_service.candidate_message(session.id, "missing", "hi") == []


@pytest.mark.asyncio
async def test_evict_idle_drops_session_state(ops_service):
    ws = FakeWebSocket()
    session = await _joined_session(ops_service, ws)
    await ops_service.start_session(session.id)
    session.updated_at = 0.0  # test-only direct mutation

    removed = await ops_service.evict_idle(600)

    assert removed == [session.id]
    assert ops_service.snapshot(session.id) is None
    assert ops_service.engine.flow_state.snapshot(session.id) == {}
    assert await ops_service.hub.members(session.id) == []


@pytest.mark.asyncio
async def test_concurrent_messages_broadcast_in_store_order(ops_service):
    ws = FakeWebSocket()
    session = await _joined_session(ops_service, ws)
    await ops_service.start_session(session.id)

    await asyncio.gather(
        *(ops_service.candidate_message(session.id, "ops", f"guess {n}") for n in range(20))
    )

    broadcast = [
        (p["sender"], p["text"], p["ts"])
        for p in _decoded(ws)
        if p["type"] == "chat:append" and p["channel"] == "ops"
    ]
    stored = [(m.sender, m.text, m.ts) for m in session.channel("ops").history]
    assert broadcast == stored
    assert len(stored) == 41

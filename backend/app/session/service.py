from __future__ import annotations

import asyncio
from dataclasses import asdict

from app.scenario.grader import grade_task
from app.scenario.loader import ScenarioCatalog
from app.session.flow_engine import FlowEngine, FlowEvent, FlowStateStore
from app.session.room_hub import RoomHub
from app.session.snapshot import (
    build_session_snapshot,
    channel_locked_payload,
    channel_view,
    chat_append_payload,
    session_started_payload,
    task_assign_payload,
    task_result_payload,
)
from app.session.store import SessionRecord, SessionStore, TaskResult, now_ms
from app.system_metrics import increment_metric, set_metric
from core.config import FOUNDER_PREFIX
from core.logger import log_event


CANDIDATE_SENDER = "candidate"
FOUNDER_SENDER = "founder"


def answer_text(answer) -> str:
    if not isinstance(answer, dict):
        return ""
    text = answer.get("text")
    if text:
        return str(text)
    choice = answer.get("choice")
    return choice if isinstance(choice, str) else ""


class SimulationService:
    """Owns the session store, flow engine and rooms for one process.

    Mutations on a session run under that session's lock together with their
    broadcasts, so clients see events in store order.
    """

    def __init__(
        self,
        catalog: ScenarioCatalog,
        store: SessionStore | None = None,
        hub: RoomHub | None = None,
        flow_state: FlowStateStore | None = None,
        founder_prefix: str = FOUNDER_PREFIX,
    ):
        self.catalog = catalog
        self.store = store or SessionStore()
        self.hub = hub or RoomHub()
        self.engine = FlowEngine(self.store, flow_state or FlowStateStore())
        self.founder_prefix = founder_prefix
        self._session_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        return lock

    async def _publish(self, session_id: str, payloads: list[dict]) -> list[dict]:
        for payload in payloads:
            await self.hub.broadcast(session_id, payload)
        return payloads

    def create_session(self, org: str, role: str, meta: dict | None = None) -> SessionRecord:
        scenario = self.catalog.resolve(org, role)
        session = self.store.create(scenario, meta={"org": org, "role": role, **dict(meta or {})})
        increment_metric("sessions_created")
        set_metric("sessions_active", float(len(self.store)))
        log_event("simulation", "session_created", session.id, org=org, role=role, channels=[c.name for c in session.channels])
        return session

    def get_session(self, session_id: str) -> SessionRecord | None:
        return self.store.get(session_id)

    def channel_views(self, session: SessionRecord) -> list[dict]:
        return [channel_view(channel) for channel in session.channels]

    def snapshot(self, session_id: str) -> dict | None:
        session = self.store.get(session_id)
        if session is None:
            return None
        return build_session_snapshot(session)

    def results(self, session_id: str) -> list[dict] | None:
        session = self.store.get(session_id)
        if session is None:
            return None
        return [asdict(result) for result in session.results]

    async def start_session(self, session_id: str) -> bool:
        session = self.store.get(session_id)
        if session is None:
            return False
        async with self._lock_for(session.id):
            if not self.store.mark_started(session.id):
                return True
            payloads = [session_started_payload(session.id)]
            for spec in session.scenario.channels:
                for utterance in spec.seed:
                    task = session.scenario.task(utterance.task_id)
                    if task is not None:
                        payloads.append(task_assign_payload(session.id, spec.name, task))
            payloads.extend(self.engine.start(session))
            increment_metric("sessions_started")
            log_event("simulation", "session_started", session.id, emitted=len(payloads))
            await self._publish(session.id, payloads)
        return True

    async def join(self, session_id: str, websocket) -> dict | None:
        session = self.store.get(session_id)
        if session is None:
            return None
        await self.hub.join(session.id, websocket)
        async with self._lock_for(session.id):
            snapshot = build_session_snapshot(session)
            await self.hub.send(websocket, snapshot)
        return snapshot

    async def candidate_message(self, session_id: str, channel: str, text: str) -> list[dict]:
        session = self.store.get(session_id)
        if session is None:
            return []
        async with self._lock_for(session.id):
            message = self.store.add_message(session.id, channel, CANDIDATE_SENDER, text)
            if message is None:
                return []
            payloads = [chat_append_payload(session.id, channel, message)]
            payloads.extend(self.engine.advance(session, channel, FlowEvent.message(text)))
            return await self._publish(session.id, payloads)

    async def founder_inject(self, session_id: str, channel: str, text: str) -> list[dict]:
        session = self.store.get(session_id)
        if session is None:
            return []
        async with self._lock_for(session.id):
            message = self.store.add_message(session.id, channel, FOUNDER_SENDER, f"{self.founder_prefix}{text or ''}")
            if message is None:
                return []
            log_event("simulation", "founder_injected", session.id, channel=channel)
            return await self._publish(session.id, [chat_append_payload(session.id, channel, message)])

    async def lock_channel(self, session_id: str, channel: str) -> list[dict]:
        session = self.store.get(session_id)
        if session is None:
            return []
        async with self._lock_for(session.id):
            if not self.store.lock_channel(session.id, channel):
                return []
            log_event("simulation", "channel_locked", session.id, channel=channel)
            return await self._publish(session.id, [channel_locked_payload(session.id, channel)])

    async def submit_task(self, session_id: str, task_id: str, answer) -> list[dict]:
        session = self.store.get(session_id)
        if session is None:
            return []
        async with self._lock_for(session.id):
            task = session.scenario.task(task_id)
            grade = grade_task(task, answer)
            result = TaskResult(task_id=str(task_id or ""), answer=answer, score=grade.score, detail=grade.detail, ts=now_ms())
            self.store.add_task_result(session.id, result)
            increment_metric("tasks_graded")
            log_event("simulation", "task_graded", session.id, task_id=task_id, score=grade.score, answer=answer, detail=grade.detail)

            payloads = [task_result_payload(session.id, result)]
            if task is not None:
                event = FlowEvent.task_submit(task.id, answer_text(answer))
                for channel in session.scenario.channels_for_task(task.id):
                    payloads.extend(self.engine.advance(session, channel, event))
            return await self._publish(session.id, payloads)

    async def evict_idle(self, ttl_sec: float) -> list[str]:
        removed = self.store.evict_idle(ttl_sec)
        for session_id in removed:
            self.engine.flow_state.drop(session_id)
            self._session_locks.pop(session_id, None)
            await self.hub.close_room(session_id)
            increment_metric("sessions_evicted")
            log_event("simulation", "session_evicted", session_id)
        if removed:
            set_metric("sessions_active", float(len(self.store)))
        return removed

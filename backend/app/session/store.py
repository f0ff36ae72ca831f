from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Optional

from app.scenario.models import Scenario


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ChatMessage:
    sender: str
    text: str
    ts: int


@dataclass
class ChannelRecord:
    name: str
    topic: str = ""
    history: list[ChatMessage] = field(default_factory=list)
    conversation_flow: Optional[dict] = None


@dataclass
class TaskResult:
    task_id: str
    answer: Any
    score: float
    detail: str
    ts: int


@dataclass
class SessionRecord:
    id: str
    scenario: Scenario
    channels: list[ChannelRecord] = field(default_factory=list)
    started: bool = False
    locked: set[str] = field(default_factory=set)
    meta: dict = field(default_factory=dict)
    results: list[TaskResult] = field(default_factory=list)
    created_at: float = 0.0
    updated_at: float = 0.0

    def channel(self, name: str) -> Optional[ChannelRecord]:
        for channel in self.channels:
            if channel.name == name:
                return channel
        return None


def new_session_id() -> str:
    return f"sess_{uuid.uuid4().hex}"


class SessionStore:
    """In-memory session records.

    Lookups for unknown sessions or channels are no-ops that return None/False.
    """

    def __init__(self):
        self._lock = Lock()
        self._sessions: dict[str, SessionRecord] = {}

    def create(self, scenario: Scenario, meta: dict | None = None) -> SessionRecord:
        created_ts = now_ms()
        channels = []
        for spec in scenario.channels:
            steps = scenario.steps(spec.name)
            flow = steps[0].conversation_flow if steps else None
            channels.append(
                ChannelRecord(
                    name=spec.name,
                    topic=spec.topic,
                    history=[ChatMessage(sender=u.sender, text=u.text, ts=created_ts) for u in spec.seed],
                    conversation_flow=dict(flow) if flow else None,
                )
            )
        record = SessionRecord(
            id=new_session_id(),
            scenario=scenario,
            channels=channels,
            meta=dict(meta or {}),
            created_at=time.time(),
            updated_at=time.time(),
        )
        with self._lock:
            while record.id in self._sessions:
                record.id = new_session_id()
            self._sessions[record.id] = record
        return record

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._sessions.get(str(session_id or ""))

    def touch(self, session_id: str) -> None:
        with self._lock:
            if session_id in self._sessions:
                self._sessions[session_id].updated_at = time.time()

    def mark_started(self, session_id: str) -> bool:
        """Flip ``started``; True only for the call that actually started it."""
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None or record.started:
                return False
            record.started = True
            record.updated_at = time.time()
            return True

    def add_message(self, session_id: str, channel_name: str, sender: str, text: str, ts: int | None = None) -> Optional[ChatMessage]:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return None
            channel = record.channel(channel_name)
            if channel is None:
                return None
            stamp = int(ts or now_ms())
            if channel.history:
                stamp = max(stamp, channel.history[-1].ts)
            message = ChatMessage(sender=str(sender or ""), text=str(text or ""), ts=stamp)
            channel.history.append(message)
            record.updated_at = time.time()
            return message

    def lock_channel(self, session_id: str, channel_name: str) -> bool:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None or record.channel(channel_name) is None:
                return False
            record.locked.add(channel_name)
            record.updated_at = time.time()
            return True

    def add_task_result(self, session_id: str, result: TaskResult) -> bool:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return False
            record.results.append(result)
            record.updated_at = time.time()
            return True

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def evict_idle(self, ttl_sec: float) -> list[str]:
        if not ttl_sec or ttl_sec <= 0:
            return []
        cutoff = time.time() - float(ttl_sec)
        removed: list[str] = []
        with self._lock:
            for session_id, record in list(self._sessions.items()):
                if record.updated_at <= cutoff:
                    self._sessions.pop(session_id, None)
                    removed.append(session_id)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

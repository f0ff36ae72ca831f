from __future__ import annotations

from dataclasses import asdict

from app.scenario.models import Task
from app.session.store import ChatMessage, SessionRecord, TaskResult
from core.state import SimEvent


def chat_append_payload(session_id: str, channel: str, message: ChatMessage) -> dict:
    return {
        "type": SimEvent.CHAT_APPEND.value,
        "session_id": session_id,
        "channel": channel,
        "sender": message.sender,
        "text": message.text,
        "ts": message.ts,
    }


def task_assign_payload(session_id: str, channel: str, task: Task) -> dict:
    return {
        "type": SimEvent.TASK_ASSIGN.value,
        "session_id": session_id,
        "channel": channel,
        "task": task.public_payload(),
    }


def task_result_payload(session_id: str, result: TaskResult) -> dict:
    return {
        "type": SimEvent.TASK_RESULT.value,
        "session_id": session_id,
        "task_id": result.task_id,
        "score": result.score,
        "detail": result.detail,
    }


def channel_locked_payload(session_id: str, channel: str) -> dict:
    return {
        "type": SimEvent.CHANNEL_LOCKED.value,
        "session_id": session_id,
        "channel": channel,
    }


def session_started_payload(session_id: str) -> dict:
    return {
        "type": SimEvent.SESSION_STARTED.value,
        "session_id": session_id,
    }


def channel_view(channel) -> dict:
    return {
        "name": channel.name,
        "topic": channel.topic,
        "history": [asdict(message) for message in channel.history],
        "conversation_flow": dict(channel.conversation_flow) if channel.conversation_flow else None,
    }


def build_session_snapshot(session: SessionRecord) -> dict:
    """Full state for a client joining late; replaces any replay of past events."""
    return {
        "type": SimEvent.SESSION_STATE.value,
        "session_id": session.id,
        "started": bool(session.started),
        "locked": {name: True for name in sorted(session.locked)},
        "channels": [channel_view(channel) for channel in session.channels],
    }


def _message_key(message: dict) -> tuple:
    return (str(message.get("sender") or ""), str(message.get("text") or ""), message.get("ts"))


class SessionMirror:
    """Client-side view of one session built from server payloads.

    A live ``chat:append`` may also be contained in a snapshot that raced it,
    so appends are deduplicated on (sender, text, ts).
    """

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self.started = False
        self.locked: set[str] = set()
        self.histories: dict[str, list[dict]] = {}
        self.tasks: dict[str, dict] = {}
        self.results: dict[str, dict] = {}

    def apply(self, payload: dict) -> bool:
        """Apply one server payload; False when it changed nothing."""
        event_type = str((payload or {}).get("type") or "")
        if event_type == SimEvent.SESSION_STATE.value:
            return self._apply_snapshot(payload)
        if event_type == SimEvent.CHAT_APPEND.value:
            return self._apply_append(payload)
        if event_type == SimEvent.CHANNEL_LOCKED.value:
            channel = str(payload.get("channel") or "")
            if not channel or channel in self.locked:
                return False
            self.locked.add(channel)
            return True
        if event_type == SimEvent.SESSION_STARTED.value:
            changed = not self.started
            self.started = True
            return changed
        if event_type == SimEvent.TASK_ASSIGN.value:
            task = payload.get("task") or {}
            if not task.get("id"):
                return False
            self.tasks[str(task["id"])] = dict(task)
            return True
        if event_type == SimEvent.TASK_RESULT.value:
            task_id = str(payload.get("task_id") or "")
            if not task_id:
                return False
            self.results[task_id] = {"score": payload.get("score"), "detail": payload.get("detail")}
            return True
        return False

    def _apply_snapshot(self, payload: dict) -> bool:
        self.session_id = str(payload.get("session_id") or self.session_id)
        self.histories = {
            str(channel.get("name")): [dict(message) for message in channel.get("history") or []]
            for channel in payload.get("channels") or []
        }
        self.locked |= {name for name, flag in (payload.get("locked") or {}).items() if flag}
        if payload.get("started"):
            self.started = True
        return True

    def _apply_append(self, payload: dict) -> bool:
        channel = str(payload.get("channel") or "")
        message = {"sender": payload.get("sender"), "text": payload.get("text"), "ts": payload.get("ts")}
        history = self.histories.setdefault(channel, [])
        key = _message_key(message)
        if any(_message_key(existing) == key for existing in history):
            return False
        history.append(message)
        return True

    def history(self, channel: str) -> list[dict]:
        return list(self.histories.get(channel, []))

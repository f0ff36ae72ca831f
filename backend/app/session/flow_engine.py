from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Optional

from app.scenario.matcher import first_match
from app.scenario.models import TERMINAL_INDEX, Step, Utterance
from app.session.snapshot import chat_append_payload, task_assign_payload
from app.session.store import SessionRecord, SessionStore
from app.system_metrics import increment_metric
from core.logger import log_event

MESSAGE_KIND = "message"
TASK_SUBMIT_KIND = "task_submit"

# legacy waitFor types accepted for free-text events
_MESSAGE_WAIT_TYPES = {"candidate_message", "message"}


@dataclass
class FlowEvent:
    kind: str
    text: str = ""
    task_id: Optional[str] = None

    @classmethod
    def message(cls, text: str) -> "FlowEvent":
        return cls(kind=MESSAGE_KIND, text=str(text or ""))

    @classmethod
    def task_submit(cls, task_id: str, answer_text: str) -> "FlowEvent":
        return cls(kind=TASK_SUBMIT_KIND, text=str(answer_text or ""), task_id=str(task_id or ""))

    @property
    def lookup_key(self) -> Optional[str]:
        if self.kind == TASK_SUBMIT_KIND:
            return f"taskResult:{self.task_id}"
        if self.kind == MESSAGE_KIND:
            return "message"
        return None


class FlowStateStore:
    """Per-session, per-channel pointer into the channel's step list."""

    def __init__(self):
        self._lock = Lock()
        self._pointers: dict[str, dict[str, int]] = {}

    def reset(self, session_id: str) -> None:
        with self._lock:
            self._pointers[session_id] = {}

    def get(self, session_id: str, channel: str) -> int:
        # channels never started sit on their first step
        with self._lock:
            return int(self._pointers.get(session_id, {}).get(channel, 0))

    def set(self, session_id: str, channel: str, index: int) -> None:
        with self._lock:
            self._pointers.setdefault(session_id, {})[channel] = int(index)

    def snapshot(self, session_id: str) -> dict[str, int]:
        with self._lock:
            return dict(self._pointers.get(session_id, {}))

    def drop(self, session_id: str) -> None:
        with self._lock:
            self._pointers.pop(session_id, None)


class FlowEngine:
    """Decides what a channel's script says next.

    Every method persists emitted utterances through the store and returns the
    matching outbound payloads in emission order; callers broadcast them as-is.
    """

    def __init__(self, store: SessionStore, flow_state: FlowStateStore | None = None):
        self.store = store
        self.flow_state = flow_state or FlowStateStore()

    def emit_say(self, session: SessionRecord, channel: str, utterances: list[Utterance]) -> list[dict]:
        payloads: list[dict] = []
        for utterance in utterances or []:
            message = self.store.add_message(session.id, channel, utterance.sender, utterance.text)
            if message is None:
                continue
            payloads.append(chat_append_payload(session.id, channel, message))
            task = session.scenario.task(utterance.task_id)
            if task is not None:
                payloads.append(task_assign_payload(session.id, channel, task))
        return payloads

    def start(self, session: SessionRecord) -> list[dict]:
        self.flow_state.reset(session.id)
        payloads: list[dict] = []
        for channel in session.channels:
            steps = session.scenario.steps(channel.name)
            if not steps:
                continue
            self.flow_state.set(session.id, channel.name, 0)
            payloads.extend(self.emit_say(session, channel.name, steps[0].say))
        return payloads

    def current_step(self, session: SessionRecord, channel: str) -> Optional[Step]:
        index = self.flow_state.get(session.id, channel)
        return session.scenario.step_at(channel, index)

    def advance(self, session: SessionRecord, channel: str, event: FlowEvent) -> list[dict]:
        scenario = session.scenario
        if not scenario.steps(channel):
            return []
        step = self.current_step(session, channel)
        if step is None:
            return []

        if step.is_client_paced:
            log_event("flow_engine", "client_paced_bypass", session.id, channel=channel, step=step.id)
            return []

        key = event.lookup_key
        branches = step.on.get(key) if key else None
        if branches:
            return self._advance_branches(session, channel, step, branches, event)
        return self._advance_legacy(session, channel, step, event)

    def _advance_branches(self, session: SessionRecord, channel: str, step: Step, branches: list, event: FlowEvent) -> list[dict]:
        branch = first_match(branches, event.text)
        if branch is None:
            increment_metric("flow_holds")
            log_event("flow_engine", "flow_held", session.id, channel=channel, step=step.id, key=event.lookup_key)
            return []

        payloads = self.emit_say(session, channel, branch.say)
        if branch.next_id:
            target = branch.next_index if branch.next_index is not None else session.scenario.index_of(channel, branch.next_id)
            payloads.extend(self._move_to(session, channel, step, target))
        log_event(
            "flow_engine",
            "branch_matched",
            session.id,
            channel=channel,
            step=step.id,
            next=branch.next_id,
        )
        return payloads

    def _advance_legacy(self, session: SessionRecord, channel: str, step: Step, event: FlowEvent) -> list[dict]:
        wait = step.wait_for
        if wait is None:
            return []
        satisfied = (
            (wait.type in _MESSAGE_WAIT_TYPES and event.kind == MESSAGE_KIND)
            or (wait.type == TASK_SUBMIT_KIND and event.kind == TASK_SUBMIT_KIND and wait.task_id == event.task_id)
        )
        if not satisfied:
            return []
        if step.next_id:
            target = step.next_index if step.next_index is not None else session.scenario.index_of(channel, step.next_id)
        else:
            target = TERMINAL_INDEX
        return self._move_to(session, channel, step, target)

    def _move_to(self, session: SessionRecord, channel: str, step: Step, target: int) -> list[dict]:
        self.flow_state.set(session.id, channel, target)
        increment_metric("flow_advances")
        destination = session.scenario.step_at(channel, target)
        if destination is None:
            log_event("flow_engine", "flow_terminal", session.id, channel=channel, from_step=step.id)
            return []
        log_event("flow_engine", "flow_advanced", session.id, channel=channel, from_step=step.id, to_step=destination.id)
        return self.emit_say(session, channel, destination.say)


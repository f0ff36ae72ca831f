from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional

# conversationFlow types where the client drives turn-taking for the step
CLIENT_PACED_FLOW_TYPES = {"ababab"}

TERMINAL_INDEX = -1

_JS_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
}


def regex_flags(flags: str | None) -> int:
    """Translate script-authored flag letters ("i", "m", "s") into ``re`` flags.

    Letters with no Python meaning ("g", "u", "y") are ignored.
    """
    value = 0
    for letter in str(flags or ""):
        value |= _JS_FLAG_MAP.get(letter, 0)
    return value


def compile_pattern(pattern: str, flags: str | None) -> tuple[re.Pattern | None, str | None]:
    try:
        return re.compile(str(pattern), regex_flags(flags)), None
    except (re.error, TypeError) as exc:
        return None, str(exc)


@dataclass
class Utterance:
    sender: str
    text: str
    task_id: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: dict) -> "Utterance":
        data = dict(raw or {})
        task_id = data.get("taskId", data.get("task_id"))
        return cls(
            sender=str(data.get("sender") or ""),
            text=str(data.get("text") or ""),
            task_id=str(task_id) if task_id else None,
        )


@dataclass
class Predicate:
    """Branch condition evaluated against free text.

    ``present`` is False when the branch declared no ``when`` at all.
    """
    present: bool = True
    otherwise: bool = False
    contains_any: Optional[list[str]] = None
    regex: Optional[str] = None
    flags: str = "i"
    compiled: Optional[re.Pattern] = field(default=None, repr=False)
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: dict | None) -> "Predicate":
        if raw is None:
            return cls(present=False)
        data = dict(raw or {})
        contains_any = data.get("containsAny", data.get("contains_any"))
        predicate = cls(
            otherwise=bool(data.get("otherwise")),
            contains_any=[str(token) for token in contains_any] if isinstance(contains_any, list) else None,
            regex=str(data["regex"]) if data.get("regex") else None,
            flags=str(data.get("flags") or "i"),
        )
        if predicate.regex is not None:
            predicate.compiled, predicate.error = compile_pattern(predicate.regex, predicate.flags)
        return predicate


@dataclass
class Branch:
    when: Predicate
    say: list[Utterance] = field(default_factory=list)
    next_id: Optional[str] = None
    next_index: Optional[int] = None


@dataclass
class WaitFor:
    type: str
    task_id: Optional[str] = None


@dataclass
class Step:
    id: str
    say: list[Utterance] = field(default_factory=list)
    on: dict[str, list[Branch]] = field(default_factory=dict)
    wait_for: Optional[WaitFor] = None
    next_id: Optional[str] = None
    next_index: Optional[int] = None
    conversation_flow: Optional[dict] = None

    @property
    def is_client_paced(self) -> bool:
        flow = self.conversation_flow or {}
        return str(flow.get("type") or "").lower() in CLIENT_PACED_FLOW_TYPES

    def utterances(self):
        yield from self.say
        for branches in self.on.values():
            for branch in branches:
                yield from branch.say


@dataclass
class RubricRule:
    regex: str
    flags: str = ""
    score: float = 0.0
    why: str = ""
    compiled: Optional[re.Pattern] = field(default=None, repr=False)
    error: Optional[str] = None


@dataclass
class Task:
    id: str
    type: str
    correct: Optional[str] = None
    score: float = 0.0
    answer_kind: Optional[str] = None
    rubric: list[RubricRule] = field(default_factory=list)
    max_score: Optional[float] = None
    raw: dict = field(default_factory=dict)

    @property
    def is_mcq(self) -> bool:
        return self.type == "mcq"

    @property
    def is_freeform(self) -> bool:
        return self.type == "freeform" or self.answer_kind == "freeform"

    def public_payload(self) -> dict:
        """Task as sent to clients, without the answer key or rubric."""
        payload = {key: value for key, value in self.raw.items() if key not in {"correct", "rubric", "maxScore"}}
        answer = payload.get("answer")
        if isinstance(answer, dict):
            payload["answer"] = {k: v for k, v in answer.items() if k not in {"rubric", "maxScore"}}
        return payload


@dataclass
class ChannelSpec:
    name: str
    topic: str = ""
    seed: list[Utterance] = field(default_factory=list)


@dataclass
class Scenario:
    channels: list[ChannelSpec] = field(default_factory=list)
    script: dict[str, list[Step]] = field(default_factory=dict)
    tasks: dict[str, Task] = field(default_factory=dict)
    step_index: dict[str, dict[str, int]] = field(default_factory=dict)
    task_channels: dict[str, list[str]] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)

    def steps(self, channel: str) -> list[Step]:
        return self.script.get(channel) or []

    def step_at(self, channel: str, index: int) -> Optional[Step]:
        steps = self.steps(channel)
        if index < 0 or index >= len(steps):
            return None
        return steps[index]

    def index_of(self, channel: str, step_id: str | None) -> int:
        if not step_id:
            return TERMINAL_INDEX
        return self.step_index.get(channel, {}).get(step_id, TERMINAL_INDEX)

    def task(self, task_id: str | None) -> Optional[Task]:
        if not task_id:
            return None
        return self.tasks.get(str(task_id))

    def channels_for_task(self, task_id: str) -> list[str]:
        return list(self.task_channels.get(str(task_id), []))

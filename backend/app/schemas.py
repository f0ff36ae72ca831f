from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from core.config import DEFAULT_ORG, DEFAULT_ROLE
from core.state import SimEvent


class CreateSessionRequest(BaseModel):
    org: str = DEFAULT_ORG
    role: str = DEFAULT_ROLE
    postingId: str | None = None
    applicationId: str | None = None


class ChannelView(BaseModel):
    name: str
    topic: str = ""
    history: list[dict] = Field(default_factory=list)
    conversation_flow: dict | None = None


class CreateSessionResponse(BaseModel):
    sessionId: str
    channels: list[ChannelView]


class OkResponse(BaseModel):
    ok: bool = True


class _WireEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_id: str = Field(alias="sessionId", min_length=1)


class JoinEvent(_WireEvent):
    type: Literal["session:join"]
    as_: str | None = Field(default=None, alias="as")


class ChatMessageEvent(_WireEvent):
    type: Literal["chat:message"]
    channel: str
    text: str = ""


class FounderInjectEvent(_WireEvent):
    type: Literal["founder:inject"]
    channel: str
    text: str = ""


class ChannelLockEvent(_WireEvent):
    type: Literal["channel:lock"]
    channel: str


class TaskSubmitEvent(_WireEvent):
    type: Literal["task:submit"]
    task_id: str = Field(alias="taskId")
    answer: Any = None


INBOUND_EVENTS: dict[str, type[_WireEvent]] = {
    SimEvent.SESSION_JOIN.value: JoinEvent,
    SimEvent.CHAT_MESSAGE.value: ChatMessageEvent,
    SimEvent.FOUNDER_INJECT.value: FounderInjectEvent,
    SimEvent.CHANNEL_LOCK.value: ChannelLockEvent,
    SimEvent.TASK_SUBMIT.value: TaskSubmitEvent,
}

# backend/core/state.py

from enum import Enum

class SimEvent(str, Enum):
    # client -> server
    SESSION_JOIN = "session:join"
    CHAT_MESSAGE = "chat:message"
    FOUNDER_INJECT = "founder:inject"
    CHANNEL_LOCK = "channel:lock"
    TASK_SUBMIT = "task:submit"

    # server -> room
    SESSION_STATE = "session:state"
    SESSION_STARTED = "session:started"
    CHAT_APPEND = "chat:append"
    TASK_ASSIGN = "task:assign"
    TASK_RESULT = "task:result"
    CHANNEL_LOCKED = "channel:locked"

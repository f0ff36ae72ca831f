import asyncio
import copy
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.scenario.loader import ScenarioCatalog, load_scenario
from app.session.room_hub import RoomHub
from app.session.service import SimulationService
from starlette.websockets import WebSocketState


OPS_SCENARIO = {
    "channels": [
        {"name": "ops", "topic": "Latency"},
        {"name": "notes", "topic": "Scratch", "seed": [{"sender": "bot", "text": "seeded", "taskId": "t-mcq"}]},
        {"name": "debrief", "topic": "Wrap up"},
    ],
    "script": {
        "ops": [
            {
                "id": "S0",
                "say": [{"sender": "sre", "text": "U0"}],
                "on": {
                    "message": [
                        {"when": {"containsAny": ["p95"]}, "say": [{"sender": "sre", "text": "U1"}], "next": "S1"},
                        {"when": {"otherwise": True}, "say": [{"sender": "sre", "text": "U2"}]},
                    ]
                },
            },
            {
                "id": "S1",
                "say": [{"sender": "sre", "text": "S1 says", "taskId": "t-mcq"}],
                "on": {
                    "taskResult:t-mcq": [
                        {"when": {"containsAny": ["B"]}, "say": [{"sender": "sre", "text": "right"}], "next": "S2"},
                    ]
                },
            },
            {"id": "S2", "say": [{"sender": "sre", "text": "S2 says"}]},
        ],
        "debrief": [
            {
                "id": "E0",
                "conversationFlow": {"type": "ababab"},
                "say": [{"sender": "vp", "text": "brief me"}],
                "on": {"message": [{"when": {"otherwise": True}, "say": [{"sender": "vp", "text": "never"}], "next": "E1"}]},
            },
            {"id": "E1", "say": [{"sender": "vp", "text": "done"}]},
        ],
    },
    "tasks": [
        {"id": "t-mcq", "type": "mcq", "title": "Pick", "correct": "B", "score": 5},
        {
            "id": "t-free",
            "type": "doc_review",
            "answer": {
                "kind": "freeform",
                "maxScore": 6,
                "rubric": [
                    {"match": {"regex": "index", "flags": "i"}, "score": 4, "why": "index"},
                    {"match": {"regex": "cache", "flags": "i"}, "score": 4, "why": "cache"},
                ],
            },
        },
    ],
}


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SCENARIO_STRICT", "true")
    monkeypatch.setenv("SESSION_IDLE_TTL_SEC", "0")


class FakeWebSocket:
    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.sent = []

    async def send_text(self, payload: str):
        await asyncio.sleep(0)
        self.sent.append(payload)


@pytest.fixture
def ops_data() -> dict:
    return copy.deepcopy(OPS_SCENARIO)


@pytest.fixture
def ops_scenario(ops_data):
    return load_scenario(ops_data)


@pytest.fixture
def templates_catalog() -> ScenarioCatalog:
    return ScenarioCatalog(ROOT / "templates")


class _DictCatalog(ScenarioCatalog):
    def __init__(self, data: dict):
        super().__init__(ROOT / "templates", files={"test": {"ops": "inline"}})
        self._data = data

    def resolve(self, org: str, role: str):
        self.path_for(org, role)
        return load_scenario(copy.deepcopy(self._data), strict=self.strict)


@pytest.fixture
def ops_service(ops_data) -> SimulationService:
    return SimulationService(_DictCatalog(ops_data), hub=RoomHub(), founder_prefix="(Founder) ")

from fastapi import APIRouter, WebSocket
import json
import logging
import time
import uuid

from pydantic import ValidationError
from starlette.websockets import WebSocketState

from app.schemas import INBOUND_EVENTS, ChannelLockEvent, ChatMessageEvent, FounderInjectEvent, JoinEvent, TaskSubmitEvent
from app.session.service import SimulationService
from app.system_metrics import decrement_metric, increment_metric
from core.config import WS_MAX_TEXT_BYTES
from core.logger import log_event

logger = logging.getLogger("ws_sim")

router = APIRouter()


async def dispatch_event(service: SimulationService, websocket, event) -> None:
    if isinstance(event, JoinEvent):
        snapshot = await service.join(event.session_id, websocket)
        if snapshot is None:
            log_event("ws_sim", "join_unknown_session", event.session_id)
        else:
            log_event("ws_sim", "session_joined", event.session_id, role=event.as_ or "candidate")
        return
    if isinstance(event, ChatMessageEvent):
        await service.candidate_message(event.session_id, event.channel, event.text)
        return
    if isinstance(event, FounderInjectEvent):
        await service.founder_inject(event.session_id, event.channel, event.text)
        return
    if isinstance(event, ChannelLockEvent):
        await service.lock_channel(event.session_id, event.channel)
        return
    if isinstance(event, TaskSubmitEvent):
        await service.submit_task(event.session_id, event.task_id, event.answer)


def parse_frame(text_payload: str):
    """Decode one inbound text frame; None when it should be dropped."""
    if len(text_payload.encode("utf-8")) > WS_MAX_TEXT_BYTES:
        logger.warning("WS message too large | bytes=%s", len(text_payload.encode("utf-8")))
        return None
    try:
        payload = json.loads(text_payload)
    except json.JSONDecodeError:
        logger.warning("WS message is not JSON")
        return None
    if not isinstance(payload, dict):
        return None
    payload_type = str(payload.get("type") or "").strip().lower()
    model = INBOUND_EVENTS.get(payload_type)
    if model is None:
        if payload_type not in {"ping", "pong"}:
            logger.warning("WS message type unknown | type=%s", payload_type or "unknown")
        return payload_type or None
    try:
        return model.model_validate({**payload, "type": payload_type})
    except ValidationError as exc:
        logger.warning("WS message invalid | type=%s errors=%s", payload_type, exc.error_count())
        return None


@router.websocket("/ws/sim")
async def sim_ws(websocket: WebSocket):
    service: SimulationService = websocket.app.state.simulation
    connection_id = str(uuid.uuid4())

    await websocket.accept()
    increment_metric("ws_connections_active", 1)
    log_event("ws_sim", "connect", "", connection_id=connection_id)

    async def _safe_send(payload: dict):
        if websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            await service.hub.send(websocket, payload)
        except Exception as exc:
            logger.warning("ws send failed | connection_id=%s err=%s", connection_id, exc)

    initial_session = str(websocket.query_params.get("session_id") or "").strip()
    if initial_session:
        await service.join(initial_session, websocket)

    stop_reason = "client_disconnect"
    try:
        while True:
            msg = await websocket.receive()
            if msg["type"] == "websocket.disconnect":
                break
            if not msg.get("text"):
                continue

            event = parse_frame(str(msg.get("text") or ""))
            if event is None:
                increment_metric("ws_frames_dropped")
                continue
            if event == "ping":
                await _safe_send({"type": "pong", "ts": time.time()})
                continue
            if isinstance(event, str):
                if event != "pong":
                    increment_metric("ws_frames_dropped")
                continue
            await dispatch_event(service, websocket, event)
    except Exception as exc:
        stop_reason = "error"
        logger.warning("ws loop failed | connection_id=%s err=%s", connection_id, exc)
    finally:
        rooms = await service.hub.leave_all(websocket)
        decrement_metric("ws_connections_active", 1)
        increment_metric("ws_disconnects_total")
        log_event("ws_sim", "disconnect", ",".join(rooms), connection_id=connection_id, reason=stop_reason)

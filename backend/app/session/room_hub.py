from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import defaultdict

from starlette.websockets import WebSocketState

from app.system_metrics import increment_metric, observe_fanout_ms, set_metric

logger = logging.getLogger("room_hub")


class RoomHub:
    """Websocket rooms keyed by session id.

    Each connection has its own send lock so concurrent fan-outs never
    interleave frames on one socket.
    """

    def __init__(self):
        self.room_connections: dict[str, set] = defaultdict(set)
        self.websocket_send_locks: dict[object, asyncio.Lock] = {}
        self.room_lock = asyncio.Lock()

    async def join(self, room_id: str, websocket) -> None:
        if not room_id:
            return
        async with self.room_lock:
            self.room_connections[room_id].add(websocket)
            self.websocket_send_locks.setdefault(websocket, asyncio.Lock())
            set_metric("ws_rooms_active", float(len(self.room_connections)))

    async def leave(self, room_id: str, websocket) -> None:
        if not room_id:
            return
        async with self.room_lock:
            members = self.room_connections.get(room_id)
            if members:
                members.discard(websocket)
                if not members:
                    self.room_connections.pop(room_id, None)
            if not any(websocket in members for members in self.room_connections.values()):
                self.websocket_send_locks.pop(websocket, None)
            set_metric("ws_rooms_active", float(len(self.room_connections)))

    async def leave_all(self, websocket) -> list[str]:
        async with self.room_lock:
            rooms = [room_id for room_id, members in self.room_connections.items() if websocket in members]
        for room_id in rooms:
            await self.leave(room_id, websocket)
        return rooms

    async def close_room(self, room_id: str) -> None:
        async with self.room_lock:
            members = self.room_connections.pop(room_id, set())
            for websocket in members:
                if not any(websocket in other for other in self.room_connections.values()):
                    self.websocket_send_locks.pop(websocket, None)
            set_metric("ws_rooms_active", float(len(self.room_connections)))

    async def members(self, room_id: str) -> list:
        async with self.room_lock:
            return list(self.room_connections.get(room_id, set()))

    async def send(self, websocket, payload: dict) -> None:
        async with self.room_lock:
            send_lock = self.websocket_send_locks.setdefault(websocket, asyncio.Lock())
        async with send_lock:
            await websocket.send_text(json.dumps(payload))

    async def _send_text_with_lock(self, websocket, encoded_payload: str) -> None:
        async with self.room_lock:
            send_lock = self.websocket_send_locks.get(websocket)
        if send_lock is None:
            return
        async with send_lock:
            await websocket.send_text(encoded_payload)

    async def broadcast(self, room_id: str, payload: dict, exclude=None) -> None:
        if not room_id:
            return

        started = time.perf_counter()
        async with self.room_lock:
            targets = list(self.room_connections.get(room_id, set()))

        encoded = json.dumps(payload)
        for conn in targets:
            if exclude is not None and conn is exclude:
                continue
            if getattr(conn, "client_state", WebSocketState.CONNECTED) != WebSocketState.CONNECTED:
                continue
            try:
                await self._send_text_with_lock(conn, encoded)
            except Exception as exc:
                logger.warning("Room send failed | room_id=%s err=%s", room_id, exc)
                continue
        increment_metric("messages_broadcast")
        observe_fanout_ms((time.perf_counter() - started) * 1000.0)

import threading
import time
from typing import Any


_lock = threading.Lock()
_metrics: dict[str, float] = {
    "ws_connections_active": 0.0,
    "ws_rooms_active": 0.0,
    "ws_disconnects_total": 0.0,
    "ws_frames_dropped": 0.0,
    "sessions_active": 0.0,
    "sessions_created": 0.0,
    "sessions_started": 0.0,
    "sessions_evicted": 0.0,
    "messages_broadcast": 0.0,
    "tasks_graded": 0.0,
    "flow_advances": 0.0,
    "flow_holds": 0.0,
    "fanout_total_ms": 0.0,
    "fanout_samples": 0.0,
}


def increment_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = float(_metrics.get(key, 0.0)) + float(amount)


def decrement_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        next_value = float(_metrics.get(key, 0.0)) - float(amount)
        _metrics[key] = max(0.0, next_value)


def set_metric(name: str, value: float) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = max(0.0, float(value))


def observe_fanout_ms(value_ms: float) -> None:
    elapsed = max(0.0, float(value_ms or 0.0))
    with _lock:
        _metrics["fanout_total_ms"] = float(_metrics.get("fanout_total_ms", 0.0)) + elapsed
        _metrics["fanout_samples"] = float(_metrics.get("fanout_samples", 0.0)) + 1.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    fanout_samples = max(1.0, float(data.get("fanout_samples") or 0.0))

    payload: dict[str, Any] = {
        "generated_at": time.time(),
        "ws_connections_active": int(data.get("ws_connections_active") or 0.0),
        "ws_rooms_active": int(data.get("ws_rooms_active") or 0.0),
        "ws_disconnects_total": int(data.get("ws_disconnects_total") or 0.0),
        "ws_frames_dropped": int(data.get("ws_frames_dropped") or 0.0),
        "sessions_active": int(data.get("sessions_active") or 0.0),
        "sessions_created": int(data.get("sessions_created") or 0.0),
        "sessions_started": int(data.get("sessions_started") or 0.0),
        "sessions_evicted": int(data.get("sessions_evicted") or 0.0),
        "messages_broadcast": int(data.get("messages_broadcast") or 0.0),
        "tasks_graded": int(data.get("tasks_graded") or 0.0),
        "flow_advances": int(data.get("flow_advances") or 0.0),
        "flow_holds": int(data.get("flow_holds") or 0.0),
        "avg_fanout_ms": round(float(data.get("fanout_total_ms") or 0.0) / fanout_samples, 2),
    }

    if extra:
        payload.update(extra)
    return payload

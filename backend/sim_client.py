import argparse
import asyncio
import json
import urllib.request

import websockets

from app.session.snapshot import SessionMirror


def _post(base_http: str, path: str, body: dict | None = None) -> dict:
    data = json.dumps(body or {}).encode("utf-8")
    req = urllib.request.Request(
        f"{base_http}{path}",
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    with urllib.request.urlopen(req, timeout=5) as resp:
        return json.loads(resp.read().decode("utf-8"))


async def _drain(ws, mirror: SessionMirror, timeout_sec: float = 1.5) -> list[str]:
    seen: list[str] = []
    while True:
        try:
            msg = await asyncio.wait_for(ws.recv(), timeout=timeout_sec)
        except asyncio.TimeoutError:
            return seen
        data = json.loads(msg)
        seen.append(str(data.get("type") or ""))
        mirror.apply(data)


async def run(base_http: str, base_ws: str, org: str, role: str, channel: str, text: str) -> None:
    created = _post(base_http, "/sessions", {"org": org, "role": role})
    session_id = created["sessionId"]
    print("SESSION", session_id, [c["name"] for c in created["channels"]])

    candidate_view = SessionMirror(session_id)
    async with websockets.connect(f"{base_ws}/ws/sim") as candidate:
        await candidate.send(json.dumps({"type": "session:join", "session_id": session_id, "as": "candidate"}))
        await _drain(candidate, candidate_view)

        _post(base_http, f"/sessions/{session_id}/start")
        await _drain(candidate, candidate_view)

        await candidate.send(json.dumps({"type": "chat:message", "session_id": session_id, "channel": channel, "text": text}))
        seen = await _drain(candidate, candidate_view)
        print("EVENTS", seen)

        late_view = SessionMirror(session_id)
        async with websockets.connect(f"{base_ws}/ws/sim?session_id={session_id}") as late:
            await _drain(late, late_view)

        for message in candidate_view.history(channel):
            print(f"[{channel}] {message['sender']}: {message['text']}")
        if candidate_view.history(channel) != late_view.history(channel):
            raise RuntimeError("Late joiner history differs from live history")
    print("SIM_CLIENT_OK")


def main() -> None:
    parser = argparse.ArgumentParser(description="Drive one simulated session end to end")
    parser.add_argument("--http", default="http://127.0.0.1:4000")
    parser.add_argument("--ws", default="ws://127.0.0.1:4000")
    parser.add_argument("--org", default="sga")
    parser.add_argument("--role", default="swe")
    parser.add_argument("--channel", default="ops")
    parser.add_argument("--text", default="I'd check p95 latency first")
    args = parser.parse_args()
    asyncio.run(run(args.http, args.ws, args.org, args.role, args.channel, args.text))


if __name__ == "__main__":
    main()

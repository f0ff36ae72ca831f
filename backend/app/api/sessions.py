from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.errors import ScenarioValidationError
from app.schemas import CreateSessionRequest, CreateSessionResponse, OkResponse
from app.session.service import SimulationService

router = APIRouter()


def _service(request: Request) -> SimulationService:
    return request.app.state.simulation


def _not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "Session not found"})


@router.post("/sessions", response_model=CreateSessionResponse)
async def create_session(req: CreateSessionRequest, request: Request):
    service = _service(request)
    try:
        session = service.create_session(
            req.org,
            req.role,
            meta={"postingId": req.postingId, "applicationId": req.applicationId},
        )
    except ScenarioValidationError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    return {"sessionId": session.id, "channels": service.channel_views(session)}


@router.post("/sessions/{session_id}/start", response_model=OkResponse)
async def start_session(session_id: str, request: Request):
    if not await _service(request).start_session(session_id):
        return _not_found()
    return {"ok": True}


@router.get("/sessions/{session_id}")
async def get_session_state(session_id: str, request: Request):
    snapshot = _service(request).snapshot(session_id)
    if snapshot is None:
        return _not_found()
    return snapshot


@router.get("/sessions/{session_id}/results")
async def get_task_results(session_id: str, request: Request):
    results = _service(request).results(session_id)
    if results is None:
        return _not_found()
    return {"sessionId": session_id, "results": results}

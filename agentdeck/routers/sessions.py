from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query  # type: ignore[import-not-found]

from ..models import (
    DiscoveredSession,
    InteractiveTaskResult,
    SessionCloseResponse,
    SessionConnectRequest,
    SessionCreateRequest,
    SessionInputRequest,
    SessionInputResponse,
    SessionListResponse,
    SessionOutputResponse,
    SessionRecord,
    SessionTaskRequest,
)
from ..services.engine import Engine
from ..services.session.session_manager import (
    SessionNotFoundError,
    SessionRuntimeError,
    SessionValidationError,
)
from ..services.session.tmux_client import TmuxCommandError
from .deps import get_engine


router = APIRouter(prefix="/sessions", tags=["sessions"])


def _require_session(engine: Engine, session_id: str) -> SessionRecord:
    record = engine.session_manager.get_session(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return record


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    owner: Optional[str] = Query(default=None),
    include_closed: bool = Query(default=False),
    engine: Engine = Depends(get_engine),
):
    return SessionListResponse(
        sessions=engine.session_manager.list_sessions(owner=owner, include_closed=include_closed)
    )


@router.post("", response_model=SessionRecord)
async def create_session(body: SessionCreateRequest, engine: Engine = Depends(get_engine)):
    try:
        return await engine.session_manager.create_session(
            body.owner,
            workdir=body.workdir,
            name=body.name,
            provider=body.provider,
        )
    except SessionValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except SessionRuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


@router.post("/connect", response_model=SessionRecord)
async def connect_session(body: SessionConnectRequest, engine: Engine = Depends(get_engine)):
    try:
        return await engine.session_manager.connect_session(body.target, body.owner)
    except SessionValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("/discover", response_model=List[DiscoveredSession])
async def discover_sessions(engine: Engine = Depends(get_engine)):
    try:
        return await engine.session_manager.discover_sessions()
    except TmuxCommandError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


@router.get("/{session_id}", response_model=SessionRecord)
async def get_session(session_id: str, engine: Engine = Depends(get_engine)):
    return _require_session(engine, session_id)


@router.post("/{session_id}/input", response_model=SessionInputResponse)
async def send_input(session_id: str, body: SessionInputRequest, engine: Engine = Depends(get_engine)):
    _require_session(engine, session_id)
    delivered = await engine.session_manager.send_input(session_id, body.text)
    return SessionInputResponse(session_id=session_id, delivered=delivered)


@router.post("/{session_id}/tasks", response_model=InteractiveTaskResult)
async def execute_task(session_id: str, body: SessionTaskRequest, engine: Engine = Depends(get_engine)):
    try:
        return await engine.session_manager.execute_task(session_id, body.prompt, timeout_sec=body.timeout_sec)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("/{session_id}/output", response_model=SessionOutputResponse)
async def get_output(session_id: str, engine: Engine = Depends(get_engine)):
    _require_session(engine, session_id)
    return SessionOutputResponse(
        session_id=session_id,
        chunks=engine.session_manager.get_output_buffer(session_id),
    )


@router.delete("/{session_id}", response_model=SessionCloseResponse)
async def close_session(session_id: str, engine: Engine = Depends(get_engine)):
    _require_session(engine, session_id)
    closed = await engine.session_manager.close_session(session_id)
    return SessionCloseResponse(session_id=session_id, closed=closed)

from fastapi import APIRouter, Depends  # type: ignore[import-not-found]

from ..models import ConcurrencyStateResponse, ConcurrencyUpdateRequest, RunResult, RunSubmitRequest
from ..services.engine import Engine
from .deps import get_engine


router = APIRouter(prefix="/runs", tags=["runs"])


@router.post("", response_model=RunResult)
async def submit_run(body: RunSubmitRequest, engine: Engine = Depends(get_engine)):
    return await engine.run_service.submit_run(body.to_run_request())


@router.get("/concurrency", response_model=ConcurrencyStateResponse)
async def get_concurrency(engine: Engine = Depends(get_engine)):
    return ConcurrencyStateResponse(**engine.scheduler.state())


@router.put("/concurrency", response_model=ConcurrencyStateResponse)
async def update_concurrency(body: ConcurrencyUpdateRequest, engine: Engine = Depends(get_engine)):
    engine.scheduler.set_max_concurrency(body.max_concurrent)
    return ConcurrencyStateResponse(**engine.scheduler.state())

from contextlib import asynccontextmanager

from fastapi import FastAPI, APIRouter  # type: ignore[import-not-found]

from . import __version__
from .logging_config import setup_logging
from .routers import runs, sessions


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    from .services.engine import build_engine

    engine = getattr(app.state, "engine", None)
    if engine is None:
        engine = build_engine()
        app.state.engine = engine
    await engine.start()
    try:
        yield
    finally:
        await engine.stop()


app = FastAPI(
    title="agentdeck",
    description="Run AI command-line agents concurrently and relay clean terminal output.",
    version=__version__,
    lifespan=lifespan,
)

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(runs.router)
v1_router.include_router(sessions.router)
app.include_router(v1_router)


@app.get("/")
async def root():
    return {"message": "agentdeck is running"}

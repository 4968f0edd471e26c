"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mediabatch import __version__
from mediabatch.api.routes import router
from mediabatch.config import CORS_ORIGINS, logger as config_logger
from mediabatch.db import init_db
from mediabatch.engine import EngineUnavailableError, get_engine

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    engine = get_engine()
    try:
        engine.load()
    except EngineUnavailableError:
        # Fatal for conversions; the API stays up to report it through /api/engine
        config_logger.error("Media engine failed to load; conversions are disabled")
    config_logger.info("Media batch API started")
    yield
    engine.shutdown()
    config_logger.info("Media batch API shutting down")


app = FastAPI(
    title="Media Batch Converter API",
    description="Resize, re-encode and tag image batches or a single video through ffmpeg.",
    version=__version__,
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Session-ID"],
)


async def session_header_middleware(request, call_next):
    """Set X-Session-ID on response when the session was created by the dependency."""
    response = await call_next(request)
    if hasattr(request.state, "session_id"):
        response.headers["X-Session-ID"] = request.state.session_id
    return response


app.middleware("http")(session_header_middleware)
app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    from mediabatch.config import HOST, PORT
    uvicorn.run("mediabatch.main:app", host=HOST, port=PORT, reload=True)

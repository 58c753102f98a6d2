"""Main FastAPI application with modularized routes."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from exam_engine.database import init_db
from exam_engine.errors import EngineError
from exam_engine.logging_setup import setup_console_logging
from exam_engine.routes import challenges, clock, live_tests, sessions
from exam_engine.services.expiry_service import schedule_expiry_sweep

setup_console_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Exam Engine API")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Render engine errors as ``{code, message, details}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Startup events
@app.on_event("startup")
def startup_events() -> None:
    """Initialize database and schedule the expiry sweep on startup."""
    init_db()
    schedule_expiry_sweep()


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# Include routers
app.include_router(clock.router)
app.include_router(sessions.router)
app.include_router(challenges.router)
app.include_router(live_tests.router)

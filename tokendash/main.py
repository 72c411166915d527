"""tokendash FastAPI application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tokendash import config
from tokendash.live.broadcaster import SessionBroadcaster
from tokendash.routers.sessions import events_router, session_router
from tokendash.observability import initialize as initialize_observability, shutdown as shutdown_observability

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("tokendash")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("tokendash starting up")
    initialize_observability(app)

    app.state.broadcaster = SessionBroadcaster()
    if config.SESSION_PATH:
        logger.info(f"Default session log: {config.SESSION_PATH}")

    yield

    logger.info("tokendash shutting down")
    app.state.broadcaster.close()
    shutdown_observability(app)


app = FastAPI(
    title="tokendash API",
    description="Live token usage for Claude Code session logs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(session_router)
app.include_router(events_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    broadcaster = getattr(app.state, "broadcaster", None)
    if broadcaster is None:
        return {"status": "starting", "watchedLogs": 0, "observers": 0}
    return {
        "status": "ok",
        "watchedLogs": len(broadcaster.watched_logs),
        "observers": broadcaster.observer_count(),
    }

"""Session routes: on-demand summaries and the live event stream."""
from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from tokendash import config
from tokendash.live.broadcaster import QueueObserver, SessionBroadcaster
from tokendash.models import SessionSummary, Turn
from tokendash.parsers.sessions import parse_session_file
from tokendash.parsers.turns import group_turns

_KEEPALIVE_COMMENT = ": ping\n\n"


def _resolve_log_path(raw_path: str | None) -> Path:
    value = (raw_path or config.SESSION_PATH or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail="A session log path is required")
    path = Path(value).expanduser()
    if not path.is_absolute():
        raise HTTPException(status_code=400, detail="Session log path must be absolute")
    return path


def _get_broadcaster(request: Request) -> SessionBroadcaster:
    broadcaster = getattr(request.app.state, "broadcaster", None)
    if not broadcaster:
        raise HTTPException(status_code=503, detail="Broadcaster not initialized")
    return broadcaster


# ── Session router ──────────────────────────────────────────────────

session_router = APIRouter(prefix="/api/session", tags=["session"])


@session_router.get("", response_model=SessionSummary)
async def get_session(path: str | None = Query(None, description="Absolute path to a session .jsonl log")):
    """Summarize a session log as it is right now, without subscribing."""
    return parse_session_file(_resolve_log_path(path))


@session_router.get("/turns", response_model=list[Turn])
async def get_session_turns(path: str | None = Query(None, description="Absolute path to a session .jsonl log")):
    """Group the session's exchanges into human turns with per-turn usage."""
    summary = parse_session_file(_resolve_log_path(path))
    return group_turns(summary.exchanges)


# ── Event stream router ─────────────────────────────────────────────

events_router = APIRouter(tags=["events"])


async def _event_stream(
    broadcaster: SessionBroadcaster,
    log_path: Path,
    observer: QueueObserver,
    keepalive_seconds: float,
) -> AsyncIterator[str]:
    # Attached on first iteration; a response that is never sent registers nothing.
    broadcaster.attach(log_path, observer)
    try:
        while True:
            message = await observer.receive(timeout=keepalive_seconds)
            if message is None:
                if observer.closed:
                    break
                yield _KEEPALIVE_COMMENT
                continue
            yield message.to_sse()
    finally:
        observer.close()
        broadcaster.detach(log_path, observer)


@events_router.get("/events")
async def stream_session_events(
    request: Request,
    path: str | None = Query(None, description="Absolute path to a session .jsonl log"),
):
    """Server-Sent Events: one ``init`` summary, then ``update`` summaries as the log grows."""
    broadcaster = _get_broadcaster(request)
    log_path = _resolve_log_path(path)

    observer = QueueObserver()
    return StreamingResponse(
        _event_stream(broadcaster, log_path, observer, config.KEEPALIVE_SECONDS),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )

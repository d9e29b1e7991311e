"""
Proxyminder FastAPI application.

Local API used by the desktop UI: start/stop the supervised proxy, query its
status and captured output, read and manage the request history, compute
usage statistics, and subscribe to live notifications over Server-Sent
Events (/api/events).
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from . import __version__
from .config import config, load_settings
from .events import RequestEvent
from .exceptions import ManagementError, PersistError, ProxyMinderError
from .history import HistoryStore, JsonFileBlob
from .models import initialize_db, prune_output, recent_output, record_output
from .notifier import REQUEST_LOG, Notifier
from .process import Supervisor
from .usage import compute_usage

# Configure logging with rotation
log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

file_handler = RotatingFileHandler(
    config.app_log,
    maxBytes=config.log_max_bytes,
    backupCount=config.log_backup_count,
)
file_handler.setFormatter(log_formatter)

console_handler = logging.StreamHandler()
console_handler.setFormatter(log_formatter)

logging.basicConfig(
    level=logging.INFO,
    handlers=[file_handler, console_handler],
)
logger = logging.getLogger(__name__)

# Initialize database
initialize_db(config.db_path)

settings = load_settings(config.settings_path)
notifier = Notifier()
history_store = HistoryStore(JsonFileBlob(config.history_path), limit=config.history_limit)
supervisor = Supervisor(config, settings, history_store, notifier)


def output_callback(stream: str, level: str, message: str):
    try:
        record_output(stream, level, message)
    except Exception as e:
        logger.error(f"Failed to store proxy output: {e}")


supervisor.set_output_callback(output_callback)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting proxyminder...")

    try:
        removed = prune_output(config.output_retention_days)
        if removed:
            logger.info(f"Pruned {removed} old proxy output lines")
    except Exception as e:
        logger.error(f"Error pruning proxy output: {e}")

    if settings.auto_start:
        try:
            await supervisor.start()
        except ProxyMinderError as e:
            logger.error(f"Auto-start failed: {e}")

    yield

    logger.info("Shutting down proxyminder...")
    supervisor.shutdown()


app = FastAPI(
    title="Proxyminder",
    description="Supervisor and usage tracker for a local AI API proxy",
    version=__version__,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class RequestEventCreate(BaseModel):
    id: str = Field(..., description="Event id, e.g. req_<timestamp>_<n>")
    timestamp: int = Field(..., ge=0, description="Milliseconds since epoch")
    provider: str = "unknown"
    model: str = "unknown"
    method: str = "POST"
    path: str
    status: int = Field(..., ge=100, le=599)
    duration_ms: int = Field(0, ge=0)
    tokens_in: Optional[int] = Field(None, ge=0)
    tokens_out: Optional[int] = Field(None, ge=0)


# Proxy control
@app.get("/api/proxy/status")
async def get_proxy_status():
    """Get the proxy status and resource usage."""
    data = supervisor.status().to_dict()
    data["metrics"] = await asyncio.to_thread(supervisor.metrics)
    return data


@app.post("/api/proxy/start")
async def start_proxy():
    """Start the proxy (no-op if it is already running)."""
    try:
        status = await supervisor.start()
    except ProxyMinderError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return status.to_dict()


@app.post("/api/proxy/stop")
async def stop_proxy():
    """Stop the proxy."""
    try:
        status = await supervisor.stop()
    except ProxyMinderError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return status.to_dict()


@app.get("/api/proxy/output")
async def get_proxy_output(
    stream: Optional[str] = Query(None, description="Filter by stream: stdout, stderr"),
    limit: int = Query(100, ge=1, le=1000),
):
    """Get recent captured proxy output, newest first."""
    if stream and stream not in ("stdout", "stderr"):
        raise HTTPException(status_code=400, detail=f"Invalid stream: {stream}")
    return [line.to_dict() for line in recent_output(stream, limit)]


# History
@app.get("/api/history")
async def get_history():
    """Get the stored request history."""
    return history_store.load().to_dict()


@app.post("/api/history")
async def add_history_event(data: RequestEventCreate):
    """Add a request to the history. Duplicates are ignored."""
    event = RequestEvent(**data.model_dump())
    try:
        added = history_store.ingest(event)
    except PersistError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if added:
        notifier.publish(REQUEST_LOG, event.to_dict())
    return history_store.load().to_dict()


@app.delete("/api/history")
async def clear_history():
    """Delete all stored requests and totals."""
    try:
        history_store.clear()
    except PersistError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "cleared"}


# Usage
@app.get("/api/usage")
async def get_usage():
    """Get aggregate usage statistics."""
    return compute_usage(history_store.load()).to_dict()


@app.post("/api/usage/sync")
async def sync_usage():
    """Pull token totals from the proxy's management API into the history."""
    try:
        record = await supervisor.management.sync_usage(history_store)
    except ManagementError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except PersistError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return record.to_dict()


# Live notifications
@app.get("/api/events")
async def stream_events(request: Request):
    """
    Stream status changes and request events.

    Returns Server-Sent Events (SSE) stream.
    """

    async def event_stream():
        queue = notifier.subscribe()
        try:
            yield f"data: {json.dumps({'type': 'hello', 'payload': supervisor.status().to_dict()})}\n\n"
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=15)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        break
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {json.dumps(message)}\n\n"
        finally:
            notifier.unsubscribe(queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# Application logs
@app.get("/api/app/logs")
async def get_app_logs(lines: int = Query(100, ge=1, le=1000)):
    """Get recent proxyminder log entries."""
    try:
        with open(config.app_log, "r") as f:
            all_lines = f.readlines()
            return {"lines": all_lines[-lines:], "total": len(all_lines)}
    except FileNotFoundError:
        return {"lines": [], "total": 0}

"""
News Timer API: FastAPI server for the news reading time budget

This server provides:
- News source CRUD with per-source daily allocations
- Daily usage upserts and aggregate statistics
- Singleton user settings (daily limit, auto start)
- Reset of today's usage
"""

import logging
import traceback
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Deque, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictBool, StrictInt

from .config import VERSION, Settings, get_settings
from .errors import InternalError, NewsTimerError, ValidationError
from .store import UsageStore

logger = logging.getLogger("news_timer")
logger.setLevel(logging.INFO)

# ============ Server-side Log Buffer ============

# Circular buffer to store recent log entries (max 100)
log_buffer: Deque[dict] = deque(maxlen=100)


class LogBufferHandler(logging.Handler):
    """Logging handler that captures records into the circular buffer."""

    def emit(self, record: logging.LogRecord):
        try:
            log_buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


buffer_handler = LogBufferHandler()
buffer_handler.setLevel(logging.DEBUG)
buffer_handler.setFormatter(logging.Formatter("%(message)s"))
for _name in ("news_timer", "uvicorn", "fastapi"):
    _logger = logging.getLogger(_name)
    if buffer_handler not in _logger.handlers:
        _logger.addHandler(buffer_handler)


# ============ Request / Response Models ============

class SourceCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=10)
    url: Optional[str] = None
    allocation: Optional[StrictInt] = None


class AllocationRequest(BaseModel):
    allocation: StrictInt


class SettingsRequest(BaseModel):
    totalTimeLimit: StrictInt
    autoStart: StrictBool


class UsageRequest(BaseModel):
    sourceKey: str = Field(min_length=1)
    timeUsed: StrictInt
    sessions: StrictInt
    overrunTime: StrictInt = 0


class SourceResponse(BaseModel):
    key: str
    name: str
    icon: str
    url: Optional[str] = None
    faviconUrl: Optional[str] = None
    allocated: int
    used: int
    sessions: int
    overrunTime: int


class SuccessResponse(BaseModel):
    success: bool = True


class SettingsResponse(BaseModel):
    totalTimeLimit: int
    autoStart: bool


class StatsResponse(BaseModel):
    totalTimeUsed: int
    totalSessions: int
    totalOverrun: int
    sourcesUsed: int
    averageSessionTime: int


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    environment: str


class LogEntry(BaseModel):
    """Single log entry."""
    timestamp: str
    level: str
    message: str


class LogsResponse(BaseModel):
    """Response for recent logs."""
    logs: List[LogEntry]
    count: int


# ============ Error Responses ============

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_response(request: Request, exc: NewsTimerError, original: Exception | None = None) -> JSONResponse:
    body = {"error": exc.message, "code": exc.code, "timestamp": _now_iso()}
    settings: Settings = request.app.state.settings
    if settings.is_development:
        source = original or exc
        body["debug"] = {
            "originalMessage": str(source),
            "name": type(source).__name__,
            "stack": "".join(traceback.format_exception(type(source), source, source.__traceback__)),
        }
    return JSONResponse(status_code=exc.status_code, content=body)


async def news_timer_error_handler(request: Request, exc: NewsTimerError):
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return _error_response(request, exc)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request data")
    else:
        message = "Invalid request data"
    logger.warning(f"{request.method} {request.url.path} -> 400 {message}")
    return _error_response(request, ValidationError(message), exc)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(request, InternalError(), exc)


# ============ App ============

def get_store(request: Request) -> UsageStore:
    return request.app.state.store


def create_app(settings: Settings | None = None, store: UsageStore | None = None) -> FastAPI:
    """Build the API with its store wired in explicitly."""
    settings = settings or get_settings()
    store = store or UsageStore(settings.db_path, seed_defaults=settings.seed_defaults)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.store.ensure_initialized()
        logger.info(f"News Timer API started ({settings.env})")
        yield
        logger.info("News Timer API stopping")

    app = FastAPI(
        title="News Timer API",
        description="Reading time budget tracker for news sources",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(NewsTimerError, news_timer_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    # ---- Sources ----

    @app.get("/api/sources", response_model=List[SourceResponse])
    async def list_sources(store: UsageStore = Depends(get_store)):
        """All active sources with today's usage."""
        return await store.get_sources_with_usage()

    @app.post("/api/sources", response_model=SourceResponse, status_code=201)
    async def add_source(request: SourceCreateRequest, store: UsageStore = Depends(get_store)):
        """Create a source. Key is derived from the name and must be unique."""
        logger.info(f"Adding source: {request.name}")
        return await store.add_source(
            request.name, icon=request.icon, url=request.url, allocation=request.allocation
        )

    @app.put("/api/sources/{source_key}/allocation", response_model=SuccessResponse)
    async def update_allocation(
        source_key: str, request: AllocationRequest, store: UsageStore = Depends(get_store)
    ):
        await store.update_source_allocation(source_key, request.allocation)
        logger.info(f"Allocation: {source_key} -> {request.allocation}s")
        return {"success": True}

    @app.delete("/api/sources/{source_key}", response_model=SuccessResponse)
    async def delete_source(source_key: str, store: UsageStore = Depends(get_store)):
        """Delete a source and all of its usage rows."""
        await store.delete_source(source_key)
        return {"success": True}

    # ---- Settings ----

    @app.get("/api/settings", response_model=SettingsResponse)
    async def get_user_settings(store: UsageStore = Depends(get_store)):
        return await store.get_settings()

    @app.put("/api/settings", response_model=SuccessResponse)
    async def update_user_settings(request: SettingsRequest, store: UsageStore = Depends(get_store)):
        await store.update_settings(request.totalTimeLimit, request.autoStart)
        logger.info(f"Settings: limit={request.totalTimeLimit}s autoStart={request.autoStart}")
        return {"success": True}

    # ---- Usage / stats / reset ----

    @app.post("/api/usage", response_model=SuccessResponse)
    async def record_usage(request: UsageRequest, store: UsageStore = Depends(get_store)):
        """Upsert today's counters for a source (overwrite, not increment)."""
        await store.record_usage(
            request.sourceKey, request.timeUsed, request.sessions, request.overrunTime
        )
        return {"success": True}

    @app.get("/api/stats", response_model=StatsResponse)
    async def get_stats(store: UsageStore = Depends(get_store)):
        stats = await store.get_daily_stats()
        return stats.to_export_dict()

    @app.post("/api/reset", response_model=SuccessResponse)
    async def reset_today(store: UsageStore = Depends(get_store)):
        """Delete today's usage rows. Sources and settings are untouched."""
        await store.clear_daily_usage()
        return {"success": True}

    # ---- Health / logs ----

    @app.get("/api/health", response_model=HealthResponse)
    async def health(request: Request):
        return {
            "status": "OK",
            "timestamp": _now_iso(),
            "version": VERSION,
            "environment": request.app.state.settings.env,
        }

    @app.get("/api/logs/recent", response_model=LogsResponse)
    async def get_recent_logs(limit: int = 50):
        """Recent server logs from the circular buffer (max 100)."""
        limit = max(0, min(limit, 100))
        recent_logs = list(log_buffer)[-limit:] if limit else []
        return {"logs": recent_logs, "count": len(recent_logs)}


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)

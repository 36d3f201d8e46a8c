"""curalease REST API.

Usage:
    curalease serve                    # Start server on default port 8200
    curalease serve --port 8080        # Custom port
    curalease-api --host 0.0.0.0       # Bind to all interfaces
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from curalease.api.schemas import (
    AllocateRequest,
    CheckpointRequest,
    DecisionRequest,
    ErrorResponse,
    FinalizeRequest,
    RegisterItemsRequest,
    RegisterItemsResponse,
    SessionStatusName,
    SweepResponse,
)
from curalease.configs.base import CurationConfig
from curalease.exceptions import CurationError
from curalease.observability import add_metrics_routes, logger as structured_logger
from curalease.service import CurationService

logger = logging.getLogger(__name__)

app = FastAPI(
    title="curalease API",
    description="Leased work allocation and session coordination for curators",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

_cors_origins_raw = os.environ.get("CURALEASE_CORS_ORIGINS", "")
_cors_origins = (
    [o.strip() for o in _cors_origins_raw.split(",") if o.strip()]
    if _cors_origins_raw
    else ["http://localhost:3000", "http://127.0.0.1:3000"]
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
add_metrics_routes(app)

_service: Optional[CurationService] = None
_service_lock = threading.Lock()

_ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    status: {"model": ErrorResponse} for status in (400, 404, 409, 503)
}


def get_service() -> CurationService:
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = CurationService(CurationConfig.from_env())
    return _service


def set_service(service: Optional[CurationService]) -> None:
    """Install the service used by the routes (tests, embedding)."""
    global _service
    with _service_lock:
        _service = service


@app.exception_handler(CurationError)
async def curation_error_handler(request: Request, exc: CurationError):
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": {"code": "invalid_request", "message": str(exc)}})


@app.on_event("startup")
async def startup_events():
    service = get_service()
    if service.config.reaper.enabled and service.reaper.start():
        structured_logger.info("Reaper started", interval_seconds=service.config.reaper.interval_seconds)


@app.on_event("shutdown")
async def shutdown_events():
    if _service is not None:
        _service.reaper.stop()


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "curalease"}


@app.get("/v1/version")
def get_version():
    from curalease import __version__

    return {"version": __version__, "api_version": "v1"}


@app.post("/v1/items", response_model=RegisterItemsResponse)
def register_items(request: RegisterItemsRequest):
    count = get_service().register_items(item.model_dump() for item in request.items)
    return RegisterItemsResponse(registered=count)


@app.post("/v1/sessions", status_code=201, responses=_ERROR_RESPONSES)
def allocate(request: AllocateRequest):
    result = get_service().allocate(request.curator_id, request.batch_size)
    structured_logger.info(
        "Session allocated",
        session_id=result["session"]["session_id"],
        curator_id=request.curator_id,
        allocated=result["allocated"],
    )
    return result


@app.get("/v1/sessions")
def list_sessions(
    curator_id: Optional[str] = Query(default=None),
    status: Optional[SessionStatusName] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=500),
):
    return get_service().list_sessions(curator_id=curator_id, status=status, limit=limit)


@app.get("/v1/sessions/{session_id}", responses=_ERROR_RESPONSES)
def get_session(session_id: str):
    return get_service().get_session_summary(session_id)


@app.put("/v1/sessions/{session_id}/checkpoint", responses=_ERROR_RESPONSES)
def checkpoint(session_id: str, request: CheckpointRequest):
    return get_service().checkpoint(
        session_id,
        request.cursor_index,
        decisions=request.decisions,
        notes=request.notes,
    )


@app.post("/v1/sessions/{session_id}/resume", responses=_ERROR_RESPONSES)
def resume(session_id: str):
    return get_service().resume(session_id)


@app.post("/v1/sessions/{session_id}/finalize", responses=_ERROR_RESPONSES)
def finalize(session_id: str, request: FinalizeRequest):
    return get_service().finalize(session_id, request.action, request.final_notes)


@app.post("/v1/sessions/{session_id}/decisions", responses=_ERROR_RESPONSES)
def record_decision(session_id: str, request: DecisionRequest):
    return get_service().record_decision(session_id, request.item_id, request.to_payload())


@app.get("/v1/stats")
def stats(window_days: Optional[int] = Query(default=None, ge=1, le=3650)):
    return get_service().statistics(window_days)


@app.post("/v1/reaper/sweep", response_model=SweepResponse)
def sweep():
    return get_service().reap()


def run(host: str = "127.0.0.1", port: int = 8200, reload: bool = False):
    """Run the curalease API server."""
    import uvicorn

    print(f"Starting curalease API server on http://{host}:{port}")
    print(f"API docs available at http://{host}:{port}/docs")

    uvicorn.run(
        "curalease.api.app:app",
        host=host,
        port=port,
        reload=reload,
    )


def main():
    import argparse

    parser = argparse.ArgumentParser(description="curalease REST API Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8200, help="Port to listen on")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    args = parser.parse_args()
    run(host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()

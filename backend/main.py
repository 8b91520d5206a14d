"""
Parley - configurable conversational decision pipeline
FastAPI backend: classifier -> rule engine -> tool orchestrator -> workflow
"""

from contextlib import asynccontextmanager
import asyncio
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from routers import chat, config_admin
from routers.chat_orchestration.coordinator import TurnCoordinator, workflow_factory
from routers.chat_orchestration.session import SessionRegistry
from errors import ParleyError, error_response, log_error
from logging_config import setup_logging
from services.config_store import get_config_store
from tools.registry import ToolRegistry, register_all_tools
from utils.llm import get_llm_client, get_model_gateway
from config import runtime_config

setup_logging()
logger = logging.getLogger(__name__)

# Instance ID - changes on every startup, used by frontend to detect restarts
INSTANCE_ID = str(uuid.uuid4())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown events"""
    store = get_config_store()

    register_all_tools()
    seeded = store.seed_tools(ToolRegistry.get_all_tools().values())
    if seeded:
        logger.info(f"Seeded {len(seeded)} tool settings")

    sessions = SessionRegistry(workflow_factory(store), max_sessions=runtime_config.max_sessions)
    app.state.coordinator = TurnCoordinator(store, sessions, get_model_gateway())

    snapshot = store.snapshot()
    logger.info(
        f"Parley ready: strategy={snapshot.strategy_enabled} workflow={snapshot.workflow_enabled} "
        f"tools={len(ToolRegistry.list_enabled(snapshot))}/{len(ToolRegistry.get_all_tools())} "
        f"busy_policy={runtime_config.session_busy_policy}"
    )

    yield

    logger.info(f"Parley signing off ({len(sessions)} live sessions)")


app = FastAPI(
    title="Parley",
    description="Configurable conversational decision pipeline",
    version="1.0.0",
    lifespan=lifespan,
)


# Security Headers Middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=runtime_config.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ParleyError)
async def parley_error_handler(request: Request, exc: ParleyError):
    if exc.status_code >= 500:
        log_error(logger, exc, context=request.url.path)
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code.value}")
    return JSONResponse(status_code=exc.status_code, content=error_response(exc))


# API Routers
app.include_router(chat.router, prefix="/api", tags=["chat"])
app.include_router(config_admin.router, tags=["config"])


@app.get("/health")
async def health():
    """Health check - pings the model endpoint."""
    checks = {}
    try:
        healthy = await asyncio.to_thread(get_llm_client().is_healthy)
        checks["llm"] = "ok" if healthy else "down"
    except Exception:
        checks["llm"] = "down"

    try:
        get_config_store().snapshot()
        checks["config_store"] = "ok"
    except ParleyError:
        checks["config_store"] = "down"

    all_ok = all(v == "ok" for v in checks.values())
    return {
        "status": "healthy" if all_ok else "degraded",
        "service": "parley",
        "checks": checks,
        "tools": sorted(ToolRegistry.get_all_tools()),
    }


@app.get("/api/instance")
async def get_instance():
    """Return instance ID - changes on each startup."""
    return {"instance_id": INSTANCE_ID}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)

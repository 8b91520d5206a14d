"""
Parley Chat Router - REST surface for the decision pipeline

Endpoints (mounted under /api):
- POST /chat          {message, sessionId?} -> {reply, decisionProcess, toolCall, uiState}
- POST /reset         {sessionId?}          -> WorkflowState (opening monologue replayed)
- GET  /state                               -> WorkflowState
- POST /save-on-exit                        -> 204, transcript archived in the background

The session is taken from the body (or query), then the session cookie,
and is created when neither names a live session.
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from pydantic import BaseModel

from config import runtime_config
from errors import ErrorCode, ValidationError
from routers.chat_orchestration.coordinator import TurnCoordinator
from routers.chat_orchestration.session import ChatSession

logger = logging.getLogger(__name__)

router = APIRouter()

# alphanumeric, hyphens, underscores, max 64 chars
_SESSION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


class ChatRequest(BaseModel):
    message: str
    sessionId: Optional[str] = None


class ResetRequest(BaseModel):
    sessionId: Optional[str] = None


def get_coordinator(request: Request) -> TurnCoordinator:
    """The coordinator built during app startup."""
    return request.app.state.coordinator


def _validate_session_id(session_id: str) -> None:
    if not _SESSION_ID_PATTERN.match(session_id):
        raise ValidationError(
            "Invalid session ID",
            details="Must be alphanumeric/hyphens/underscores, max 64 chars",
            parameter="sessionId",
            code=ErrorCode.VALIDATION_INVALID_FORMAT,
        )


def _resolve_session_id(request: Request, explicit: Optional[str]) -> Optional[str]:
    session_id = explicit or request.cookies.get(runtime_config.session_cookie)
    if session_id:
        _validate_session_id(session_id)
    return session_id


def _bind_session(request: Request, response: Response, coordinator: TurnCoordinator, explicit: Optional[str]) -> ChatSession:
    session = coordinator.sessions.get_or_create(_resolve_session_id(request, explicit))
    response.set_cookie(runtime_config.session_cookie, session.session_id, httponly=True, samesite="lax")
    return session


def _validate_message(message: str) -> str:
    text = (message or "").strip()
    if not text:
        raise ValidationError("Message is empty", parameter="message")
    limit = runtime_config.max_message_length
    if len(text) > limit:
        raise ValidationError(
            "Message too long",
            details=f"{len(text)} characters, limit {limit}",
            parameter="message",
            expected=f"<= {limit} characters",
            code=ErrorCode.VALIDATION_OUT_OF_RANGE,
        )
    return text


@router.post("/chat")
async def chat(
    body: ChatRequest,
    request: Request,
    response: Response,
    coordinator: TurnCoordinator = Depends(get_coordinator),
):
    """Handle one chat turn."""
    message = _validate_message(body.message)
    session = _bind_session(request, response, coordinator, body.sessionId)
    result = await coordinator.handle_turn(session, message)
    return result.to_dict()


@router.post("/reset")
async def reset(
    request: Request,
    response: Response,
    body: Optional[ResetRequest] = None,
    coordinator: TurnCoordinator = Depends(get_coordinator),
):
    """Archive the conversation and restart the workflow."""
    session = _bind_session(request, response, coordinator, body.sessionId if body else None)
    state = await coordinator.reset(session)
    return state.to_dict()


@router.get("/state")
async def state(
    request: Request,
    response: Response,
    sessionId: Optional[str] = None,
    coordinator: TurnCoordinator = Depends(get_coordinator),
):
    """Current workflow status and rendered persona."""
    session = _bind_session(request, response, coordinator, sessionId)
    return coordinator.state(session).to_dict()


@router.post("/save-on-exit", status_code=204)
async def save_on_exit(
    request: Request,
    background_tasks: BackgroundTasks,
    sessionId: Optional[str] = None,
    coordinator: TurnCoordinator = Depends(get_coordinator),
):
    """Best-effort archive when the page unloads (sendBeacon friendly)."""
    session_id = _resolve_session_id(request, sessionId)
    if session_id:
        background_tasks.add_task(coordinator.save_on_exit, session_id)
    else:
        logger.debug("save-on-exit without a session, nothing to archive")
    return Response(status_code=204)

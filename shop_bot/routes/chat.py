"""
Chat Routes for Shop Bot
========================

This module contains the shopper-facing chat endpoints of the product-page
assistant. The endpoints are thin: every turn is handed to the
FlowOrchestrator, which owns the conversation state machine.

Endpoints:
----------
- POST /chat/start: Start a chat session on a product page
- POST /chat/message: Send a message and receive the assistant replies
- GET /chat/session/{session_id}: Recover the step and draft of a session

Conversation Flow:
------------------
1. The storefront widget calls /chat/start with the product being viewed
   and receives a session_id plus the welcome message and its buttons.
2. Each shopper message (typed text or a button label) goes to
   /chat/message together with the step the client is on, an optional
   client message id and the client's copy of the flag map.
3. The response lists the assistant messages; every message carries
   ``metadata.nextStep``, ``metadata.orderData`` and ``metadata.flags``,
   which the client echoes back on the next turn.
4. After a page reload the widget calls /chat/session/{id} to redraw the
   conversation where it stopped.

Temporary Sessions:
-------------------
/chat/start with ``temporary=true`` returns a ``temp_`` id. The first
message upgrades it to a permanent id; the response's ``session_id`` is
the one to use from then on.

Rate Limiting:
--------------
/chat/start and /chat/message are rate limited (default: 30/minute) per
session id (``X-Session-Id`` header) or client IP.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from ..config import RATE_LIMIT_ENABLED, get_rate_limit_chat
from ..db import get_db
from ..exceptions import PersistenceError, ProductNotFoundError, SessionNotFoundError
from ..flow.orchestrator import FlowOrchestrator
from ..schemas.chat import (
    ChatMessageRequest,
    ChatMessageResponse,
    ChatStartRequest,
    ChatStartResponse,
    SessionStateResponse,
)
from ..services.session_store import SessionStateStore

logger = logging.getLogger(__name__)

# Router definition
chat_router = APIRouter(prefix="/chat", tags=["Chat"])


# =============================================================================
# Rate Limiting Setup
# =============================================================================

def get_session_id_or_ip(request: Request) -> str:
    """Get rate limit key from the session header or fall back to IP."""
    session_id = request.headers.get("X-Session-Id")
    if session_id:
        return f"session:{session_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_session_id_or_ip, enabled=RATE_LIMIT_ENABLED)


# =============================================================================
# Dependencies
# =============================================================================

def get_orchestrator(db: Session = Depends(get_db)) -> FlowOrchestrator:
    """FlowOrchestrator over the request's database session."""
    return FlowOrchestrator(db)


# =============================================================================
# Chat Endpoints
# =============================================================================

@chat_router.post("/start", response_model=ChatStartResponse)
@limiter.limit(get_rate_limit_chat)
def chat_start(
    request: Request,
    req: ChatStartRequest,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
) -> ChatStartResponse:
    """
    Start a new chat session on a product page.

    Returns the session id and the welcome message with the top-level menu.
    """
    try:
        result = orchestrator.start(req.product_id, store_id=req.store_id, temporary=req.temporary)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        logger.error("Chat start failed for product %s: %s", req.product_id, e)
        raise HTTPException(status_code=503, detail="Session could not be created, please retry")

    return ChatStartResponse(session_id=result.session_id, messages=result.messages)


@chat_router.post("/message", response_model=ChatMessageResponse)
@limiter.limit(get_rate_limit_chat)
def chat_message(
    request: Request,
    req: ChatMessageRequest,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
) -> ChatMessageResponse:
    """Send one shopper message and receive the assistant replies."""
    try:
        result = orchestrator.handle(
            req.session_id,
            req.content,
            current_step=req.current_step,
            order_data=req.order_data,
            message_id=req.message_id,
            flags=req.flags,
        )
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        logger.error("Chat message failed for session %s: %s", req.session_id, e)
        raise HTTPException(status_code=503, detail="Session could not be updated, please retry")

    return ChatMessageResponse(session_id=result.session_id, messages=result.messages)


@chat_router.get("/session/{session_id}", response_model=SessionStateResponse)
def get_session_state(
    session_id: str,
    db: Session = Depends(get_db),
) -> SessionStateResponse:
    """Return the current step and draft of a session (cache, snapshot or rebuilt)."""
    try:
        loaded = SessionStateStore(db).load(session_id)
    except PersistenceError as e:
        logger.error("Session read failed for %s: %s", session_id, e)
        raise HTTPException(status_code=503, detail="Session could not be read, please retry")
    if loaded is None:
        raise HTTPException(status_code=404, detail="Session not found")

    return SessionStateResponse(
        session_id=session_id,
        current_step=loaded.state.step.value,
        order_data=loaded.state.draft.to_wire(),
        recovered_from=loaded.source,
    )

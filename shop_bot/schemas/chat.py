"""
Chat Schemas for Shop Bot
=========================

This module defines Pydantic models for the chat API endpoints, which carry
a shopper through the order-capture conversation. These schemas validate
incoming requests and structure outgoing assistant messages.

Endpoint Coverage:
------------------
- POST /chat/start: Start a new chat session for a product
- POST /chat/message: Send a message and receive the assistant's replies
- GET /chat/session/{session_id}: Recover the current step and draft

Key Concepts:
-------------
1. **Sessions**: Each conversation is identified by a session_id. Sessions
   started before the storefront knows the visitor carry a ``temp_`` id that
   is upgraded to a permanent one on the first message; the response always
   carries the final id.

2. **Steps**: Every outbound message says which step the conversation is on
   (``metadata.nextStep``). The client echoes it back as ``current_step``.

3. **Order Data**: The client may echo the draft back (``order_data``) and
   the wire flag map (``flags``). The server treats its own snapshot as the
   authority; the client copy is only used to rebuild a session whose
   server-side state was lost.

Validation:
-----------
- Message content is constrained by MAX_MESSAGE_LENGTH (default: 2000 chars).
- All required fields are enforced by Pydantic.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import MAX_MESSAGE_LENGTH


class AssistantIdentity(BaseModel):
    """Name and title rendered in the widget header of assistant messages."""
    name: str
    title: str


class MessageMetadata(BaseModel):
    """
    Routing metadata carried by every outbound message.

    Attributes:
        nextStep: Step the conversation is on after this message
        orderData: Serialized draft, when the message changes it
        flags: Wire flag map ({step}_saved, expressMode, ...)
        error: Machine-readable error code for failed turns
        orderId: Set once the order is materialized
        sessionId: Final session id (after a temporary id upgrade)
        paymentUrl: Hosted payment page, on payment instructions
        recommendations: Recommended product ids, on enriched replies
    """
    model_config = ConfigDict(extra="allow")

    nextStep: str
    orderData: Optional[Dict[str, Any]] = None
    flags: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    orderId: Optional[str] = None
    sessionId: Optional[str] = None
    paymentUrl: Optional[str] = None
    recommendations: Optional[List[Dict[str, Any]]] = None


class OutboundMessage(BaseModel):
    """One rendered chat message (assistant reply or echoed user message)."""
    type: Literal["assistant", "user"] = "assistant"
    content: str
    choices: List[str] = Field(default_factory=list)
    assistant: Optional[AssistantIdentity] = None
    metadata: MessageMetadata
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChatStartRequest(BaseModel):
    """
    Request body for starting a chat session.

    Attributes:
        product_id: Product the shopper is looking at
        store_id: Storefront the product belongs to (optional)
        temporary: Create a placeholder ``temp_`` session id
    """
    product_id: str
    store_id: Optional[str] = None
    temporary: bool = False


class ChatStartResponse(BaseModel):
    """Returned by POST /chat/start: the session id and the welcome message."""
    session_id: str
    messages: List[OutboundMessage]


class ChatMessageRequest(BaseModel):
    """
    Request body for sending a chat message.

    Attributes:
        session_id: Current chat session id (may be a ``temp_`` id)
        content: Shopper's message text (1-2000 characters)
        current_step: Step the client believes the conversation is on
        order_data: Client-side copy of the draft (optional)
        message_id: Client-generated id used to drop replayed messages
        flags: Client-side wire flag map (optional)
    """
    session_id: str
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    current_step: Optional[str] = None
    order_data: Optional[Dict[str, Any]] = None
    message_id: Optional[str] = None
    flags: Optional[Dict[str, Any]] = None


class ChatMessageResponse(BaseModel):
    """Returned by POST /chat/message: the final session id and the replies."""
    session_id: str
    messages: List[OutboundMessage]


class SessionStateResponse(BaseModel):
    """Recovered session state, as returned by GET /chat/session/{id}."""
    session_id: str
    current_step: str
    order_data: Dict[str, Any]
    recovered_from: str  # "cache", "snapshot" or "minimal"

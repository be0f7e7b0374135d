"""
Schemas Package for Shop Bot
============================

Pydantic models used for API request validation and response serialization.

Schema Organization:
--------------------
- **chat.py**: Chat session, message and outbound-message schemas
- **orders.py**: Order tracking, status update and payment callback schemas

Naming Conventions:
-------------------
- *Out: Response models (e.g., OrderTrackingOut)
- *Request: Request bodies (e.g., ChatMessageRequest)
- *Response: Complex response structures (e.g., ChatMessageResponse)
"""

# Chat schemas
from .chat import (
    AssistantIdentity,
    MessageMetadata,
    OutboundMessage,
    ChatStartRequest,
    ChatStartResponse,
    ChatMessageRequest,
    ChatMessageResponse,
    SessionStateResponse,
)

# Order schemas
from .orders import (
    OrderItemOut,
    OrderTrackingOut,
    OrderStatusUpdate,
    PaymentCallbackRequest,
    PaymentCallbackResponse,
)

__all__ = [
    "AssistantIdentity",
    "MessageMetadata",
    "OutboundMessage",
    "ChatStartRequest",
    "ChatStartResponse",
    "ChatMessageRequest",
    "ChatMessageResponse",
    "SessionStateResponse",
    "OrderItemOut",
    "OrderTrackingOut",
    "OrderStatusUpdate",
    "PaymentCallbackRequest",
    "PaymentCallbackResponse",
]

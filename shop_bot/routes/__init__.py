"""
Routes Package for Shop Bot
===========================

API route definitions organized by domain. Each module defines a FastAPI
APIRouter with related endpoints grouped together.

**Shopper-Facing Routes:**
- chat.py: Chat session start, messages and session recovery
- orders.py (orders_router): Public order tracking

**Back-Office Routes (HTTP Basic):**
- orders.py (orders_router): Order status updates
- orders.py (payments_router): Payment gateway notifications

Router Registration:
--------------------
All routers are registered by ``app_factory.create_app`` under two
prefixes: /api/v1/* (versioned) and /* (root paths used by the widget).

Error Handling:
---------------
Routes raise HTTPException for error conditions:
- 401: Invalid admin credentials
- 404: Unknown session, product or order
- 409: Order status change not allowed
- 422: Request validation (FastAPI)
- 429: Too many requests (slowapi)
- 503: Storage unavailable or admin authentication not configured
"""

from .chat import chat_router, limiter
from .orders import orders_router, payments_router

__all__ = [
    "chat_router",
    "orders_router",
    "payments_router",
    "limiter",
]

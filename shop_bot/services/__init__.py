"""
Services Package for Shop Bot
=============================

This package contains the service modules that hold the business logic and
infrastructure concerns behind the order flow.

Available Services:
-------------------
- **session_store**: Session cache (LRU + TTL) with abandoned-cart snapshots
- **idempotency**: Saved / processed markers and mode markers of a draft
- **conversation**: Message log of a session
- **catalog**: Product lookups, recommendations and stock
- **customers**: Customer lookup, statistics and accounts
- **order_materializer**: One-time draft -> Order conversion
- **payment_providers**: Payment gateway abstraction
- **payment_coordinator**: The payment sub-flow
- **message_analysis**: Free-text responder

Services receive their dependencies (database session, cache, providers)
rather than creating them internally, so tests can swap any of them.

Usage:
------
    from shop_bot.services.session_store import SessionStateStore
    from shop_bot.services.order_materializer import OrderMaterializer
"""

from . import session_store
from . import idempotency
from . import conversation
from . import catalog
from . import customers
from . import order_materializer
from . import payment_providers
from . import payment_coordinator
from . import message_analysis

__all__ = [
    "session_store",
    "idempotency",
    "conversation",
    "catalog",
    "customers",
    "order_materializer",
    "payment_providers",
    "payment_coordinator",
    "message_analysis",
]

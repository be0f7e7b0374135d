"""
Step handlers for the order flow.

Each handler owns a family of steps and turns a validated answer into a
draft mutation, a saved transition and the next assistant message.
"""

from .handler_config import BaseHandler, HandlerConfig, HandlerResult, TurnContext
from .navigation_handler import NavigationHandler
from .contact_handler import ContactHandler
from .product_handler import ProductHandler
from .payment_handler import PaymentHandler
from .post_purchase_handler import PostPurchaseHandler
from .express_handler import ExpressFlowHandler

__all__ = [
    "BaseHandler",
    "HandlerConfig",
    "HandlerResult",
    "TurnContext",
    "NavigationHandler",
    "ContactHandler",
    "ProductHandler",
    "PaymentHandler",
    "PostPurchaseHandler",
    "ExpressFlowHandler",
]

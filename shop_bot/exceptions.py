"""
Exception types for the shop bot.

User-correctable input problems are never raised: step validation returns a
result object instead. These exceptions cover the other failure categories
(persistence, external collaborators, invariant violations).
"""


class ShopBotError(Exception):
    """Base class for shop bot errors."""


class PersistenceError(ShopBotError):
    """Raised when a durable write or read fails."""


class PaymentProviderError(ShopBotError):
    """Raised when the payment gateway rejects or fails a call."""


class MessageAnalysisError(ShopBotError):
    """Raised when the free-text responder cannot produce an answer."""


class IncompleteDraftError(ShopBotError):
    """Raised when an operation needs draft fields that are still missing."""

    def __init__(self, missing_fields):
        self.missing_fields = list(missing_fields)
        super().__init__(f"Order draft is incomplete: missing {', '.join(self.missing_fields)}")


class AlreadyMaterializedError(ShopBotError):
    """Raised when a cart that was already converted is materialized again."""

    def __init__(self, session_id: str, order_id: str = None):
        self.session_id = session_id
        self.order_id = order_id
        super().__init__(f"Cart {session_id} was already converted to order {order_id or '?'}")


class OutOfStockError(ShopBotError):
    """Raised when there is not enough inventory to fulfill an item."""

    def __init__(self, product_name: str, requested: int, available: int):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Not enough inventory for {product_name}: requested {requested}, available {available}"
        )


class InvalidStatusTransitionError(ShopBotError):
    """Raised when an order status change skips or reverses the lifecycle."""

    def __init__(self, order_id: str, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(f"Order {order_id} cannot go from {current} to {requested}")


class SessionNotFoundError(ShopBotError):
    """Raised when a message arrives for a session that exists nowhere."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class ProductNotFoundError(ShopBotError):
    """Raised when a chat is started for a product that is not in the catalog."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")

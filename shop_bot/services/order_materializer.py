"""
Order Materialization Service for Shop Bot
==========================================

This module converts a session's order draft into an immutable Order record.

Key Functions:
--------------
- OrderMaterializer.materialize: one-time draft -> Order conversion
- generate_order_id: human-readable order identifiers (ORD-1234-5678)
- update_order_status: fulfilment lifecycle after creation
- get_order: lookup for order tracking

At Most One Order per Session:
------------------------------
1. ``AbandonedCart.converted_to_order`` is checked immediately before the
   insert; a converted cart raises AlreadyMaterializedError.
2. ``Order.session_id`` is unique, so a concurrent second insert fails at
   the database and is reported the same way.
3. An insert that fails on a taken order id (another session) is retried
   with a fresh id, up to ORDER_ID_ATTEMPTS times.
The caller (the payment coordinator) treats AlreadyMaterializedError as
"already done" and reuses the existing order id.

Customer Statistics:
--------------------
Order count and spend are updated after the order commit, best effort.
Materialization succeeds once the Order insert commits, whatever happens
to the statistics.

Order Lifecycle:
----------------
pending -> confirmed -> shipped -> delivered, and cancelled from pending
or confirmed.
"""

import logging
import random
import time
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import (
    AlreadyMaterializedError,
    IncompleteDraftError,
    InvalidStatusTransitionError,
    PersistenceError,
)
from ..flow.draft import OrderDraft
from ..logging_config import mask_phone
from ..models import AbandonedCart, Order
from .catalog import CatalogService
from .customers import update_customer_stats

logger = logging.getLogger(__name__)


ORDER_STATUS_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}

# Fresh ids drawn before materialization gives up
ORDER_ID_ATTEMPTS = 5


def generate_order_id() -> str:
    """ORD-{4 random digits}-{last 4 digits of the epoch milliseconds}."""
    millis = int(time.time() * 1000)
    return f"ORD-{random.randint(1000, 9999)}-{millis % 10000:04d}"


def get_order(db: Session, order_id: str) -> Optional[Order]:
    return db.query(Order).filter(Order.id == order_id).one_or_none()


def get_order_for_session(db: Session, session_id: str) -> Optional[Order]:
    return db.query(Order).filter(Order.session_id == session_id).one_or_none()


def update_order_status(db: Session, order_id: str, status: str) -> Optional[Order]:
    """
    Move an order along its lifecycle.

    Returns:
        The updated order, or None if the order does not exist.

    Raises:
        InvalidStatusTransitionError: for a transition the lifecycle forbids.
    """
    order = get_order(db, order_id)
    if order is None:
        return None
    if status == order.status:
        return order
    if status not in ORDER_STATUS_TRANSITIONS.get(order.status, set()):
        raise InvalidStatusTransitionError(order_id, order.status, status)
    order.status = status
    db.commit()
    logger.info("Order %s moved to %s", order_id, status)
    return order


class OrderMaterializer:
    """Creates the Order record for a session, exactly once."""

    def __init__(self, db: Session, catalog: CatalogService = None):
        self.db = db
        self.catalog = catalog or CatalogService(db)

    def _load_draft(self, cart: Optional[AbandonedCart], draft: Optional[OrderDraft]) -> OrderDraft:
        if draft is not None:
            return draft.model_copy(deep=True)
        order_data = (cart.meta or {}).get("orderData") if cart is not None else None
        if order_data:
            return OrderDraft.from_wire(order_data)
        raise IncompleteDraftError(["orderData"])

    def materialize(
        self,
        session_id: str,
        draft: OrderDraft = None,
        payment_status: str = "completed",
    ) -> str:
        """
        Create the Order for ``session_id`` and return its id.

        ``draft`` is the in-flight draft of the current turn, which is never
        older than the snapshot. Without it the durable snapshot is read.

        Raises:
            AlreadyMaterializedError: the session already has an order.
            IncompleteDraftError: the draft cannot make a valid order.
            PersistenceError: the insert failed for another reason.
        """
        cart = self.db.query(AbandonedCart).filter(AbandonedCart.id == session_id).one_or_none()
        if cart is not None and cart.converted_to_order:
            raise AlreadyMaterializedError(session_id, cart.order_id)

        source = self._load_draft(cart, draft)
        source.recalculate()
        missing = source.missing_payment_fields()
        if missing:
            raise IncompleteDraftError(missing)

        for attempt in range(1, ORDER_ID_ATTEMPTS + 1):
            order_id = generate_order_id()
            try:
                self._insert(session_id, order_id, source, payment_status)
                break
            except IntegrityError as e:
                self.db.rollback()
                existing = get_order_for_session(self.db, session_id)
                if existing is not None:
                    logger.warning("Concurrent materialization for session %s: %s", session_id, e)
                    raise AlreadyMaterializedError(session_id, existing.id) from e
                logger.warning(
                    "Order id %s already taken (attempt %d/%d)", order_id, attempt, ORDER_ID_ATTEMPTS,
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Order insert failed for session %s: %s", session_id, e)
                raise PersistenceError(f"Could not create order for session {session_id}") from e
        else:
            logger.error("No free order id for session %s after %d attempts", session_id, ORDER_ID_ATTEMPTS)
            raise PersistenceError(f"Could not allocate an order id for session {session_id}")

        logger.info(
            "Order %s created for session %s (%s, %d FCFA, customer %s)",
            order_id, session_id, source.payment_method, source.total_amount,
            mask_phone(source.phone),
        )

        # Statistics never fail the order
        update_customer_stats(self.db, source)
        return order_id

    def _insert(self, session_id: str, order_id: str, source: OrderDraft, payment_status: str) -> None:
        """Add the Order, convert the cart and take the stock in one commit."""
        self.db.add(Order(
            id=order_id,
            session_id=session_id,
            product_id=source.product_id,
            store_id=source.store_id,
            first_name=source.first_name,
            last_name=source.last_name,
            phone=source.phone,
            email=source.email,
            city=source.city,
            address=source.address,
            items=[
                {**item.model_dump(), "total": item.line_total}
                for item in source.items
            ],
            subtotal=source.subtotal,
            delivery_cost=source.delivery_cost,
            total_amount=source.total_amount,
            payment_method=source.payment_method,
            payment_status=payment_status,
            status="pending",
            notes=source.notes,
            meta={"source": "chat", "itemCount": source.item_count},
        ))
        cart = self.db.query(AbandonedCart).filter(AbandonedCart.id == session_id).one_or_none()
        if cart is None:
            cart = AbandonedCart(id=session_id, meta={})
            self.db.add(cart)
        cart.converted_to_order = True
        cart.order_id = order_id
        self.catalog.decrement_stock(source.items)
        self.db.commit()

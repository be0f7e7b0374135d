"""
Order & Payment Routes for Shop Bot
===================================

Endpoints around materialized orders and the payment gateway.

Endpoints:
----------
- GET /orders/{order_id}: Public order tracking (no contact details)
- POST /orders/{order_id}/status: Move an order along its lifecycle (admin)
- POST /payments/callback: Payment gateway notification (admin credentials)

Orders are only ever created by the chat flow (OrderMaterializer); these
endpoints read them and change their fulfilment status.

Error Handling:
---------------
- 404: Unknown order id
- 409: Status change not allowed from the current status
- 401 / 503: Back-office authentication (see auth.py)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth import verify_admin_credentials
from ..db import get_db
from ..exceptions import InvalidStatusTransitionError
from ..models import Order
from ..schemas.orders import (
    OrderItemOut,
    OrderStatusUpdate,
    OrderTrackingOut,
    PaymentCallbackRequest,
    PaymentCallbackResponse,
)
from ..services.order_materializer import get_order, get_order_for_session, update_order_status
from ..services.payment_coordinator import record_payment_callback

logger = logging.getLogger(__name__)

# Router definitions
orders_router = APIRouter(prefix="/orders", tags=["Orders"])
payments_router = APIRouter(prefix="/payments", tags=["Payments"])


def _tracking_out(order: Order) -> OrderTrackingOut:
    items = [OrderItemOut.model_validate(item) for item in order.items or []]
    return OrderTrackingOut(
        id=order.id,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        items=items,
        subtotal=order.subtotal,
        delivery_cost=order.delivery_cost,
        total_amount=order.total_amount,
        city=order.city,
        created_at=order.created_at,
    )


# =============================================================================
# Order Endpoints
# =============================================================================

@orders_router.get("/{order_id}", response_model=OrderTrackingOut)
def track_order(
    order_id: str,
    db: Session = Depends(get_db),
) -> OrderTrackingOut:
    """Customer-facing order tracking by order id."""
    order = get_order(db, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return _tracking_out(order)


@orders_router.post("/{order_id}/status", response_model=OrderTrackingOut)
def change_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    _admin: str = Depends(verify_admin_credentials),
) -> OrderTrackingOut:
    """
    Move an order along pending -> confirmed -> shipped -> delivered.

    Requires admin authentication. Cancelling is allowed until shipping.
    """
    try:
        order = update_order_status(db, order_id, payload.status)
    except InvalidStatusTransitionError as e:
        logger.warning("Rejected status change: %s", e)
        raise HTTPException(status_code=409, detail=str(e))
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return _tracking_out(order)


# =============================================================================
# Payment Endpoints
# =============================================================================

@payments_router.post("/callback", response_model=PaymentCallbackResponse)
def payment_callback(
    payload: PaymentCallbackRequest,
    db: Session = Depends(get_db),
    _admin: str = Depends(verify_admin_credentials),
) -> PaymentCallbackResponse:
    """
    Record the final status of a payment attempt.

    The chat flow picks the new status up on its next verification, so the
    shopper's "J'ai payé" completes the order once this has been received.
    """
    transaction = record_payment_callback(
        db, payload.session_id, payload.reference, payload.status, payload.payload,
    )
    if transaction is None:
        raise HTTPException(status_code=404, detail="Payment reference not found")

    order = get_order_for_session(db, payload.session_id)
    return PaymentCallbackResponse(
        status=transaction.status,
        order_id=order.id if order is not None else None,
    )

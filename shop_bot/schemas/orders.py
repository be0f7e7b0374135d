"""
Order Schemas for Shop Bot
==========================

Pydantic models for the order and payment endpoints.

Endpoint Coverage:
------------------
- GET /orders/{order_id}: Public order tracking
- POST /orders/{order_id}/status: Fulfilment status update
- POST /payments/callback: Payment gateway webhook

Order Lifecycle:
----------------
1. **pending**: Order created (cash on delivery, or payment just confirmed)
2. **confirmed**: Store accepted the order
3. **shipped**: Handed to the delivery rider
4. **delivered**: Received by the customer
5. **cancelled**: Cancelled before delivery

Orders are created from the chat session once, by the order materializer;
nothing here creates or edits order contents.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict


class OrderItemOut(BaseModel):
    """One line of a materialized order."""
    product_id: str
    name: str
    price: int
    quantity: int
    total: int


class OrderTrackingOut(BaseModel):
    """
    Customer-facing view of an order.

    Contact fields are deliberately absent; tracking only needs the order id.
    """
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    items: List[OrderItemOut]
    subtotal: int
    delivery_cost: int
    total_amount: int
    city: Optional[str] = None
    created_at: Optional[datetime] = None


class OrderStatusUpdate(BaseModel):
    """Request body for moving an order along its fulfilment lifecycle."""
    status: Literal["confirmed", "shipped", "delivered", "cancelled"]


class PaymentCallbackRequest(BaseModel):
    """
    Payment gateway webhook payload.

    Attributes:
        session_id: Session the payment belongs to (PaymentTransaction.order_id)
        reference: Payment reference returned at initiation
        status: Final gateway status
        payload: Raw gateway fields, stored on the transaction for audit
    """
    session_id: str
    reference: str
    status: Literal["completed", "failed", "pending"]
    payload: Optional[Dict[str, Any]] = None


class PaymentCallbackResponse(BaseModel):
    status: str
    order_id: Optional[str] = None

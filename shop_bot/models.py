from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    JSON,
    DateTime,
    Text,
    Index,
    func,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


# --- Catalog ---

class Product(Base):
    """A storefront product the assistant can sell."""
    __tablename__ = "products"

    id = Column(String, primary_key=True, index=True)
    store_id = Column(String, nullable=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Integer, nullable=False, default=0)  # whole FCFA
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    # When True, the "buy now" shortcut offers the express flow first
    express_enabled = Column(Boolean, nullable=False, default=False)

    # Product ids recommended alongside this one, in display order
    related_product_ids = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# --- Customers ---

class Customer(Base):
    """
    Customer aggregate keyed by international phone number.

    Order count and spend are maintained on a best-effort basis when an order
    is materialized; they are statistics, not the source of truth.
    """
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String, unique=True, nullable=False, index=True)  # +221771234567
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    city = Column(String, nullable=True)
    address = Column(String, nullable=True)

    total_orders = Column(Integer, nullable=False, default=0)
    total_spent = Column(Integer, nullable=False, default=0)

    # Set when the customer opts into an account after a purchase
    password_hash = Column(String, nullable=True)
    account_created_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


# --- Conversations ---

class Conversation(Base):
    """
    One chat session with the assistant.

    meta holds the lightweight step marker ({"step": ..., "messageCount": ...})
    mirrored from the session store on a best-effort basis.
    """
    __tablename__ = "conversations"

    id = Column(String, primary_key=True, index=True)  # session id
    product_id = Column(String, nullable=True, index=True)
    store_id = Column(String, nullable=True, index=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class ChatMessage(Base):
    """A persisted user or assistant message."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(String, nullable=False, index=True)

    # Client-supplied dedup key for inbound messages
    message_id = Column(String, nullable=True, index=True)
    # For assistant messages: the inbound message_id they answer
    reply_to = Column(String, nullable=True, index=True)

    type = Column(String, nullable=False)  # 'user' or 'assistant'
    content = Column(Text, nullable=False, default="")
    choices = Column(JSON, nullable=False, default=list)
    meta = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )


# --- Abandoned carts (durable session snapshot) ---

class AbandonedCart(Base):
    """
    Durable snapshot of a session's order draft.

    meta layout:
        orderData: full serialized OrderDraft
        currentStep: step the user is on right now
        progressHistory: append-only [{"step": ..., "timestamp": ...}]
    """
    __tablename__ = "abandoned_carts"

    id = Column(String, primary_key=True, index=True)  # session id
    product_id = Column(String, nullable=True, index=True)
    store_id = Column(String, nullable=True, index=True)

    # Copy of customer fields for quick lookup / remarketing
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True, index=True)
    city = Column(String, nullable=True)
    address = Column(String, nullable=True)

    cart_stage = Column(String, nullable=False, default="initial", index=True)
    converted_to_order = Column(Boolean, nullable=False, default=False, index=True)
    order_id = Column(String, nullable=True)

    meta = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


# --- Orders ---

class Order(Base):
    """Materialized, immutable order. Exactly one per session."""
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True)  # ORD-1234-5678
    # Unique: the database backs the at-most-one-order-per-session rule
    session_id = Column(String, unique=True, nullable=False, index=True)
    product_id = Column(String, nullable=True)
    store_id = Column(String, nullable=True, index=True)

    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True, index=True)
    email = Column(String, nullable=True)
    city = Column(String, nullable=True)
    address = Column(String, nullable=True)

    items = Column(JSON, nullable=False, default=list)
    subtotal = Column(Integer, nullable=False, default=0)
    delivery_cost = Column(Integer, nullable=False, default=0)
    total_amount = Column(Integer, nullable=False, default=0)

    payment_method = Column(String, nullable=True)
    payment_status = Column(String, nullable=False, default="pending")  # pending/completed/failed
    status = Column(String, nullable=False, default="pending", index=True)  # pending/confirmed/shipped/delivered/cancelled
    notes = Column(Text, nullable=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


# --- Payments ---

class PaymentTransaction(Base):
    """
    One payment attempt. Several may exist per session (retries, method
    switches); the latest by creation is authoritative.
    """
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, nullable=False, index=True)  # session id
    provider = Column(String, nullable=False)  # WAVE / ORANGE_MONEY / CARD / CASH_ON_DELIVERY
    amount = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="XOF")
    status = Column(String, nullable=False, default="pending", index=True)  # pending/completed/failed
    reference = Column(String, nullable=False, index=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)  # paymentUrl, gateway ids

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_payment_transactions_order_created", "order_id", "created_at"),
    )

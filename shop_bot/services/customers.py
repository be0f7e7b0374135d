"""
Customer Service.

Customers are keyed by their international phone number. This module looks
them up for the returning-customer shortcut, keeps their aggregate order
statistics, and creates post-purchase accounts.

Aggregate statistics are best effort: ``update_customer_stats`` never
raises, so a failure there can never fail an order.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import bcrypt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..flow.draft import OrderDraft
from ..logging_config import mask_phone
from ..models import Customer

logger = logging.getLogger(__name__)


def find_customer_by_phone(db: Session, phone: Optional[str]) -> Optional[Customer]:
    if not phone:
        return None
    return db.query(Customer).filter(Customer.phone == phone).one_or_none()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash
        return False


def _apply_draft(customer: Customer, draft: OrderDraft) -> None:
    """Copy non-empty contact fields from the draft onto the customer."""
    for name in ("first_name", "last_name", "email", "city", "address"):
        value = getattr(draft, name)
        if value:
            setattr(customer, name, value)


def update_customer_stats(db: Session, draft: OrderDraft) -> bool:
    """
    Upsert the customer for an order and bump order count and spend.

    Best effort: failures are logged and rolled back, never raised.

    Returns:
        True if the statistics were committed, False otherwise.
    """
    if not draft.phone:
        return False
    try:
        customer = find_customer_by_phone(db, draft.phone)
        if customer is None:
            customer = Customer(phone=draft.phone, total_orders=0, total_spent=0)
            db.add(customer)
        _apply_draft(customer, draft)
        customer.total_orders = (customer.total_orders or 0) + 1
        customer.total_spent = (customer.total_spent or 0) + draft.total_amount
        db.commit()
        logger.info(
            "Customer stats updated for %s: %d orders",
            mask_phone(draft.phone), customer.total_orders,
        )
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to update customer stats for %s: %s", mask_phone(draft.phone), e)
        return False


def create_account(db: Session, phone: str, email: str, password: str) -> Customer:
    """
    Attach login credentials to the customer with this phone.

    The password is stored only as a salted bcrypt hash.
    """
    customer = find_customer_by_phone(db, phone)
    if customer is None:
        customer = Customer(phone=phone, total_orders=0, total_spent=0)
        db.add(customer)
    customer.email = email
    customer.password_hash = hash_password(password)
    customer.account_created_at = datetime.now(timezone.utc)
    db.commit()
    logger.info("Account created for customer %s", mask_phone(phone))
    return customer

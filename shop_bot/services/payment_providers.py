"""
Payment provider abstraction layer.

This module provides a pluggable payment gateway interface so the payment
coordinator never depends on one provider's wire format.

Providers:
    - SandboxPaymentProvider: hosted checkout links + confirmation through the
      /payments/callback endpoint. Verification reads the latest
      PaymentTransaction row of the session.
    - HttpPaymentProvider: a real gateway over HTTPS (requests).

Usage:
    from shop_bot.services.payment_providers import get_payment_provider

    provider = get_payment_provider()
    initiation = provider.initiate(15000, "WAVE", {"phone": "+221..."}, reference)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from sqlalchemy.orm import Session

from ..config import (
    CARD_PAYMENT_URL,
    CURRENCY,
    ORANGE_MONEY_PAYMENT_URL,
    PAYMENT_API_KEY,
    PAYMENT_API_URL,
    PAYMENT_PROVIDER,
    PAYMENT_REQUEST_TIMEOUT,
    WAVE_PAYMENT_URL,
)
from ..exceptions import PaymentProviderError
from ..models import PaymentTransaction

logger = logging.getLogger(__name__)


class PaymentGateway(str, Enum):
    """Supported payment gateway implementations."""
    SANDBOX = "sandbox"
    HTTP = "http"


ONLINE_METHODS = ("WAVE", "ORANGE_MONEY", "CARD")


@dataclass
class PaymentInitiation:
    """Result of starting a payment."""
    reference: str
    transaction_id: str
    payment_url: Optional[str] = None


@dataclass
class PaymentVerification:
    """
    Current status of a payment: pending, completed or failed.

    ``expired`` is set by the coordinator when the verification budget ran
    out while the payment was still pending.
    """
    status: str
    transaction_id: Optional[str] = None
    expired: bool = False


class PaymentProvider(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for display and logs."""
        pass

    @abstractmethod
    def initiate(
        self,
        amount: int,
        method: str,
        customer_info: Dict[str, Any],
        reference: str,
    ) -> PaymentInitiation:
        """
        Start a payment.

        Args:
            amount: Amount in whole XOF
            method: WAVE, ORANGE_MONEY or CARD
            customer_info: first_name, last_name, phone, email (optional)
            reference: Merchant reference (PAY_{ms}_{session_id})

        Raises:
            PaymentProviderError: when the gateway refuses or is unreachable
        """
        pass

    @abstractmethod
    def verify(self, session_id: str, transaction_id: str, db: Optional[Session] = None) -> PaymentVerification:
        """
        Look up the status of a payment.

        Raises:
            PaymentProviderError: when the gateway is unreachable
        """
        pass


class SandboxPaymentProvider(PaymentProvider):
    """
    Local gateway: deterministic checkout links, status from the database.

    A payment is completed when the /payments/callback endpoint (or an
    operator) marks its PaymentTransaction as completed.
    """

    CHECKOUT_URLS = {
        "WAVE": WAVE_PAYMENT_URL,
        "ORANGE_MONEY": ORANGE_MONEY_PAYMENT_URL,
        "CARD": CARD_PAYMENT_URL,
    }

    @property
    def name(self) -> str:
        return "sandbox"

    def initiate(self, amount, method, customer_info, reference) -> PaymentInitiation:
        base_url = self.CHECKOUT_URLS.get(method)
        if base_url is None:
            raise PaymentProviderError(f"Unsupported payment method: {method}")
        query = urlencode({"amount": amount, "currency": CURRENCY, "reference": reference})
        return PaymentInitiation(
            reference=reference,
            transaction_id=reference,
            payment_url=f"{base_url}?{query}",
        )

    def verify(self, session_id, transaction_id, db=None) -> PaymentVerification:
        if db is None:
            raise PaymentProviderError("Sandbox verification needs a database session")
        transaction = (
            db.query(PaymentTransaction)
            .filter(PaymentTransaction.order_id == session_id)
            .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
            .first()
        )
        if transaction is None:
            return PaymentVerification(status="failed", transaction_id=transaction_id)
        return PaymentVerification(status=transaction.status, transaction_id=transaction.reference)


class HttpPaymentProvider(PaymentProvider):
    """Payment gateway reached over HTTPS."""

    def __init__(self, api_url: str = PAYMENT_API_URL, api_key: str = PAYMENT_API_KEY,
                 timeout: int = PAYMENT_REQUEST_TIMEOUT):
        if not api_url:
            raise ValueError("PAYMENT_API_URL is required for the http payment provider")
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "http"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def initiate(self, amount, method, customer_info, reference) -> PaymentInitiation:
        payload = {
            "amount": amount,
            "currency": CURRENCY,
            "provider": method,
            "reference": reference,
            "customer": customer_info,
        }
        try:
            response = requests.post(
                f"{self.api_url}/payments",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise PaymentProviderError(f"Payment initiation failed: {e}") from e

        return PaymentInitiation(
            reference=data.get("reference", reference),
            transaction_id=str(data.get("id") or data.get("transaction_id") or reference),
            payment_url=data.get("payment_url") or data.get("paymentUrl"),
        )

    def verify(self, session_id, transaction_id, db=None) -> PaymentVerification:
        try:
            response = requests.get(
                f"{self.api_url}/payments/{transaction_id}",
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise PaymentProviderError(f"Payment verification failed: {e}") from e

        status = str(data.get("status", "pending")).lower()
        if status not in ("pending", "completed", "failed"):
            logger.warning("Unknown gateway status '%s' for %s, treating as pending", status, transaction_id)
            status = "pending"
        return PaymentVerification(status=status, transaction_id=transaction_id)


# Provider registry
_PROVIDERS = {
    PaymentGateway.SANDBOX: SandboxPaymentProvider,
    PaymentGateway.HTTP: HttpPaymentProvider,
}

# Cached provider instance
_provider_instance: Optional[PaymentProvider] = None


def get_payment_provider(gateway: Optional[PaymentGateway] = None, **kwargs) -> PaymentProvider:
    """
    Get the configured payment provider.

    Uses a singleton pattern - the same provider instance is returned
    for subsequent calls (unless the gateway changes).
    """
    global _provider_instance

    if gateway is None:
        try:
            gateway = PaymentGateway(PAYMENT_PROVIDER)
        except ValueError:
            logger.warning("Unknown payment provider '%s', defaulting to sandbox", PAYMENT_PROVIDER)
            gateway = PaymentGateway.SANDBOX

    if _provider_instance is not None and _provider_instance.name == gateway.value:
        return _provider_instance

    provider_class = _PROVIDERS.get(gateway)
    if provider_class is None:
        raise ValueError(f"Unsupported payment provider: {gateway}")

    try:
        _provider_instance = provider_class(**kwargs)
        logger.info("Initialized payment provider: %s", _provider_instance.name)
    except Exception as e:
        logger.error("Failed to initialize payment provider %s: %s", gateway, e)
        raise

    return _provider_instance

"""
Configuration Module for Shop Bot
=================================

This module centralizes all configuration settings, environment variables, and
constants used throughout the Shop Bot application. By consolidating
configuration in one place, we achieve:

1. **Single Source of Truth**: All environment variables and defaults are defined
   here, making it easy to see what configuration options exist.

2. **Easy Environment Management**: Different environments (dev, staging, prod)
   can override settings via environment variables without code changes.

3. **Type Safety**: Configuration values are parsed and typed at module load time,
   catching configuration errors early.

Configuration Categories:
-------------------------
- **Assistant Identity**: Name and title shown on every assistant message.

- **Session Management**: TTL and cache size settings for the in-memory session
  cache that sits in front of the abandoned-cart snapshots.

- **Order Capture Rules**: Quantity bounds, minimal lengths for city/address,
  delivery costs and currency used while building the order draft.

- **Payments**: Which payment gateway to talk to, amount bounds, and the
  verification budget used while waiting for a payment confirmation.

- **Message Analysis**: Model and thresholds for the free-text responder.

- **Rate Limiting / CORS**: HTTP surface protection and frontend integration.

- **Admin Authentication**: Credentials for the back-office endpoints.

- **Logging**: Log level and the third-party loggers kept quiet.

Environment Variables:
----------------------
- BOT_NAME / BOT_TITLE: Assistant identity (default: "Rose", "Assistante d'achat")
- SESSION_TTL_SECONDS: Session cache TTL (default: 3600)
- SESSION_MAX_CACHE_SIZE: Max cached sessions (default: 1000)
- MAX_MESSAGE_LENGTH: Max user message length (default: 2000)
- DEFAULT_COUNTRY_CODE: Country used for phone validation (default: "SN")
- DELIVERY_COST_DAKAR / DELIVERY_COST_DEFAULT: Delivery costs in FCFA
- PAYMENT_PROVIDER: "sandbox" or "http" (default: "sandbox")
- PAYMENT_API_URL / PAYMENT_API_KEY: HTTP payment gateway settings
- PAYMENT_VERIFICATION_TIMEOUT_SECONDS / PAYMENT_POLL_INTERVAL_SECONDS / PAYMENT_MAX_POLLS_PER_MESSAGE
- OPENAI_MODEL: Model used by the message analyzer (default: "gpt-4o-mini")
- RATE_LIMIT_CHAT: Chat endpoint rate limit (default: "30 per minute")
- RATE_LIMIT_ENABLED: Enable/disable rate limiting (default: "true")
- CORS_ORIGINS: Comma-separated allowed origins (default: "*")
- ADMIN_USERNAME / ADMIN_PASSWORD: Back-office HTTP Basic credentials (no default password)
- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: "INFO")

Usage:
------
    from shop_bot.config import (
        SESSION_TTL_SECONDS,
        MAX_QUANTITY,
        BUYING_INTENT_THRESHOLD,
    )
"""

import os
from typing import List


# =============================================================================
# Assistant Identity
# =============================================================================
# Every assistant message carries this identity so the storefront widget can
# render the avatar header consistently.

BOT_NAME: str = os.getenv("BOT_NAME", "Rose")
BOT_TITLE: str = os.getenv("BOT_TITLE", "Assistante d'achat")


# =============================================================================
# Session Management Configuration
# =============================================================================
# Sessions are cached in memory (LRU + TTL) and persisted as abandoned-cart
# snapshots so they survive a process restart.

# How long sessions stay in the cache before being evicted (seconds)
# Evicted sessions are restored from their abandoned-cart snapshot
SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", "3600"))  # 1 hour

# Maximum number of sessions to keep in memory
# When exceeded, the least recently used session is evicted
SESSION_MAX_CACHE_SIZE: int = int(os.getenv("SESSION_MAX_CACHE_SIZE", "1000"))

# Placeholder sessions created before the storefront knows the visitor
TEMP_SESSION_PREFIX: str = "temp_"


# =============================================================================
# Input Validation Configuration
# =============================================================================

# Maximum allowed message length in characters
MAX_MESSAGE_LENGTH: int = int(os.getenv("MAX_MESSAGE_LENGTH", "2000"))

MIN_QUANTITY: int = 1
MAX_QUANTITY: int = 10

# Deliberately permissive: completion matters more than geocoding accuracy
MIN_CITY_LENGTH: int = 2
MIN_ADDRESS_LENGTH: int = 5
MIN_EXPRESS_NAME_LENGTH: int = 3

# Country used when the phone number carries no international prefix
DEFAULT_COUNTRY_CODE: str = os.getenv("DEFAULT_COUNTRY_CODE", "SN")


# =============================================================================
# Pricing & Delivery Configuration
# =============================================================================
# Amounts are whole FCFA (XOF has no minor unit).

CURRENCY: str = "XOF"
CURRENCY_LABEL: str = "FCFA"

DELIVERY_COST_DAKAR: int = int(os.getenv("DELIVERY_COST_DAKAR", "1000"))
DELIVERY_COST_DEFAULT: int = int(os.getenv("DELIVERY_COST_DEFAULT", "2500"))

# Cities billed at the local delivery rate (compared case-insensitively)
LOCAL_DELIVERY_CITIES: List[str] = ["dakar"]


# =============================================================================
# Payment Configuration
# =============================================================================
# The payment gateway is an external collaborator. "sandbox" keeps everything
# local (payment links + confirmation through the callback endpoint), "http"
# talks to a real gateway over HTTPS.

PAYMENT_PROVIDER: str = os.getenv("PAYMENT_PROVIDER", "sandbox").lower()
PAYMENT_API_URL: str = os.getenv("PAYMENT_API_URL", "").rstrip("/")
PAYMENT_API_KEY: str = os.getenv("PAYMENT_API_KEY", "")
PAYMENT_REQUEST_TIMEOUT: int = int(os.getenv("PAYMENT_REQUEST_TIMEOUT", "10"))

# Hosted checkout pages used by the sandbox gateway
WAVE_PAYMENT_URL: str = os.getenv("WAVE_PAYMENT_URL", "https://pay.wave.com/m/shop")
ORANGE_MONEY_PAYMENT_URL: str = os.getenv(
    "ORANGE_MONEY_PAYMENT_URL", "https://orange-money.sn/pay/shop"
)
CARD_PAYMENT_URL: str = os.getenv("CARD_PAYMENT_URL", "https://checkout.shop.sn/card")

PAYMENT_MIN_AMOUNT: int = 100
PAYMENT_MAX_AMOUNT: int = 10_000_000

# Overall budget for waiting on a payment confirmation, and the polling interval
PAYMENT_VERIFICATION_TIMEOUT_SECONDS: int = int(
    os.getenv("PAYMENT_VERIFICATION_TIMEOUT_SECONDS", "300")
)  # 5 minutes
PAYMENT_POLL_INTERVAL_SECONDS: float = float(os.getenv("PAYMENT_POLL_INTERVAL_SECONDS", "5"))

# Verification polls made while answering one "I have paid" message
PAYMENT_MAX_POLLS_PER_MESSAGE: int = int(os.getenv("PAYMENT_MAX_POLLS_PER_MESSAGE", "3"))

SUPPORT_PHONE: str = os.getenv("SUPPORT_PHONE", "+221 77 333 44 55")


# =============================================================================
# Message Analysis Configuration
# =============================================================================
# Free-text turns (outside structured steps) are answered by an LLM-backed
# message analyzer.

OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

# Buying-intent score above which product recommendations are attached
BUYING_INTENT_THRESHOLD: float = 0.7
MAX_RECOMMENDATIONS: int = 2

# Number of history messages passed to the analyzer
ANALYSIS_HISTORY_SIZE: int = 6


# =============================================================================
# Rate Limiting Configuration
# =============================================================================
# Uses slowapi library with in-memory storage (use Redis for multi-worker prod).

RATE_LIMIT_CHAT: str = os.getenv("RATE_LIMIT_CHAT", "30 per minute")
RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"


def get_rate_limit_chat() -> str:
    """
    Return the current chat rate limit.

    This function allows dynamic override in tests without modifying
    the module-level constant.
    """
    return RATE_LIMIT_CHAT


# =============================================================================
# CORS Configuration
# =============================================================================
# Format: comma-separated list of origins, e.g., "https://myshop.sn,https://admin.myshop.sn"
# Default "*" allows all origins (suitable for development only)

_cors_origins_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in _cors_origins_env.split(",")
    if origin.strip()
] or ["*"]


# =============================================================================
# Admin Authentication
# =============================================================================
# HTTP Basic credentials for the back-office endpoints (order status updates,
# payment notifications). No default password: admin endpoints answer 503
# until one is configured.

ADMIN_USERNAME: str = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD: str = os.getenv("ADMIN_PASSWORD", "")


# =============================================================================
# Logging Configuration
# =============================================================================
# Applied by logging_config.setup_logging() at startup.

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Third-party loggers held at WARNING unless LOG_LEVEL is DEBUG
QUIET_LOGGERS: tuple = (
    "httpx",
    "httpcore",
    "openai",
    "instructor",
    "urllib3",
    "slowapi",
    "sqlalchemy.engine",
)

"""
Authentication Module for Shop Bot
==================================

HTTP Basic authentication for the back-office endpoints: order status
updates and payment gateway notifications. Shopper-facing chat and order
tracking endpoints are public.

Credentials come from ADMIN_USERNAME / ADMIN_PASSWORD (see config.py).
When ADMIN_PASSWORD is not set the protected endpoints answer 503 instead
of opening up.

Usage:
------
    from shop_bot.auth import verify_admin_credentials

    @router.post("/orders/{order_id}/status")
    def update_status(
        _admin: str = Depends(verify_admin_credentials),
        db: Session = Depends(get_db),
    ):
        ...
"""

import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from . import config


# Shared realm so browsers reuse credentials across back-office pages
security = HTTPBasic(realm="Shop Bot Admin")


def verify_admin_credentials(
    credentials: HTTPBasicCredentials = Depends(security),
) -> str:
    """
    FastAPI dependency checking the back-office credentials.

    Returns:
        The authenticated username.

    Raises:
        HTTPException (503): ADMIN_PASSWORD is not configured.
        HTTPException (401): wrong username or password.
    """
    if not config.ADMIN_PASSWORD:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin authentication not configured. Set ADMIN_PASSWORD environment variable.",
        )

    # Constant-time comparison
    username_correct = secrets.compare_digest(
        credentials.username.encode("utf-8"),
        config.ADMIN_USERNAME.encode("utf-8"),
    )
    password_correct = secrets.compare_digest(
        credentials.password.encode("utf-8"),
        config.ADMIN_PASSWORD.encode("utf-8"),
    )

    if not (username_correct and password_correct):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username

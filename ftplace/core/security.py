"""
ftplace — core/security.py
─────────────────────────────────────────────────────────────────
Access-token inspection helpers.

The canvas server issues JWT access tokens. We never hold its
signing key, so claims are read unverified, only to learn WHEN
the token expires and refresh before the server answers 426.

Usage:
    from ftplace.core.security import token_expiry, is_expiring

    if is_expiring(creds.access_token, margin=30):
        await coordinator.ensure_fresh("token expiring")
─────────────────────────────────────────────────────────────────
"""

import logging
import time
from typing import Optional

from jose import JWTError, jwt

logger = logging.getLogger("ftplace.security")


def token_claims(token: str) -> dict:
    """
    Decode JWT claims without verifying the signature.
    Raises JWTError if the token is not a JWT.
    """
    return jwt.get_unverified_claims(token)


def token_expiry(token: Optional[str]) -> Optional[float]:
    """Epoch seconds of the `exp` claim, or None when unknown."""
    if not token:
        return None
    try:
        exp = token_claims(token).get("exp")
    except JWTError:
        return None
    if exp is None:
        return None
    try:
        return float(exp)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric exp claim: {exp!r}")
        return None


def is_expiring(token: Optional[str], margin: float = 0.0, now: Optional[float] = None) -> bool:
    """True when the token's expiry is known and falls within `margin` seconds."""
    expiry = token_expiry(token)
    if expiry is None:
        return False
    current = time.time() if now is None else now
    return expiry - current <= margin


def preview(token: Optional[str], length: int = 10) -> str:
    """Short, log-safe prefix of a secret."""
    if not token:
        return "<none>"
    return token[:length] + ("..." if len(token) > length else "")

"""HMAC-SHA256 signed image tokens.

Tokens have the form ``{expiry}.{hex-hmac}`` where expiry is a Unix timestamp
in seconds and the HMAC covers ``{key}:{expiry}``.
"""

import hashlib
import hmac
import time
from typing import Optional


def _sign(message: str, secret: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def create_token(key: str, secret: str, expiry_seconds: int, now: Optional[float] = None) -> str:
    """Create a time-limited token for a blob key."""
    expiry = int(now if now is not None else time.time()) + expiry_seconds
    return f"{expiry}.{_sign(f'{key}:{expiry}', secret)}"


def verify_token(key: str, token: str, secret: str, now: Optional[float] = None) -> bool:
    """Check a token against a blob key; malformed or expired tokens are rejected."""
    expiry_text, dot, signature = token.partition(".")
    if not dot or not expiry_text.isdigit():
        return False

    expiry = int(expiry_text)
    current = now if now is not None else time.time()
    if not expiry or current > expiry:
        return False

    expected = _sign(f"{key}:{expiry}", secret)
    return hmac.compare_digest(signature, expected)

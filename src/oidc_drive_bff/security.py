# src/oidc_drive_bff/security.py

import hashlib
import hmac
import logging
import secrets
import string
from typing import Optional

logger = logging.getLogger(__name__)

RANDOM_VALUE_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
MIN_RANDOM_VALUE_LENGTH = 24


def generate_random_value(length: int = MIN_RANDOM_VALUE_LENGTH) -> str:
    """
    Returns an opaque alphanumeric string drawn from the OS CSPRNG.
    Used for `state`, `nonce`, session ids and the per-process session secret.
    """
    if length < MIN_RANDOM_VALUE_LENGTH:
        raise ValueError(f"Random values must be at least {MIN_RANDOM_VALUE_LENGTH} characters long.")
    return "".join(secrets.choice(RANDOM_VALUE_ALPHABET) for _ in range(length))


def constant_time_equals(expected: Optional[str], returned: Optional[str]) -> bool:
    """Exact string comparison; a missing value on either side never matches."""
    if not expected or not returned:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), returned.encode("utf-8"))


def _signature(value: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_value(value: str, secret: str) -> str:
    return f"{value}.{_signature(value, secret)}"


def unsign_value(signed_value: Optional[str], secret: str) -> Optional[str]:
    """Returns the original value, or None when the signature does not check out."""
    if not signed_value or "." not in signed_value:
        return None
    value, _, signature = signed_value.rpartition(".")
    expected = _signature(value, secret).encode("utf-8")
    if not value or not hmac.compare_digest(signature.encode("utf-8"), expected):
        logger.debug("unsign_value - Rejected value with bad signature.")
        return None
    return value

"""
Utility functions shared by the API handlers and the callback dispatcher.
"""

import hmac
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

AUTH_SCHEMES = ("Bearer ", "Basic ")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format as ISO-8601 UTC with millisecond precision, e.g. 2025-01-15T10:00:00.500Z."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def storage_timestamp(dt: Optional[datetime] = None) -> str:
    """
    Format for database columns: microsecond precision so that string
    ordering follows insertion order.
    """
    dt = dt or utc_now()
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def extract_token(auth_header: str) -> str:
    """
    Extract the API key from an Authorization header value.

    Accepts "Bearer <key>", "Basic <key>" (some SDKs send this) or the raw
    key. A bare scheme with nothing after it is compared as-is.
    """
    for scheme in AUTH_SCHEMES:
        if auth_header.startswith(scheme) and len(auth_header) > len(scheme):
            return auth_header[len(scheme):]
    return auth_header


def verify_api_key(auth_header: str, api_key: str) -> bool:
    """
    Compare the token from an Authorization header with the stored key.

    Args:
        auth_header: Raw Authorization header value
        api_key: Stored credential

    Returns:
        True if the token matches, False otherwise
    """
    token = extract_token(auth_header)
    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(token.encode("utf-8"), api_key.encode("utf-8"))
    logger.debug(f"API key verification: {'valid' if is_valid else 'invalid'}")
    return is_valid

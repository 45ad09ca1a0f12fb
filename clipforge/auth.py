"""
Shared-secret guard for the mutating clipforge endpoints.

Batch submission, cancellation, proposal parsing and temp reaping depend on
``verify_api_key``. Status polling and health checks stay public.
"""

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from clipforge.config import get_settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Clipforge-API-Key"

# auto_error=False so a missing header gets our own 401 instead of a 403
_api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": API_KEY_HEADER},
    )


async def verify_api_key(api_key: Optional[str] = Security(_api_key_header)) -> None:
    """
    Reject requests whose header does not carry the configured key.

    With no CLIPFORGE_API_KEY set every request passes, which is how the
    service runs locally.
    """
    expected = get_settings().clipforge_api_key
    if not expected:
        return

    if not api_key:
        logger.warning(f"Request without {API_KEY_HEADER} header rejected")
        raise _unauthorized("Missing API key")

    if not hmac.compare_digest(api_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Request with wrong API key rejected")
        raise _unauthorized("Invalid API key")

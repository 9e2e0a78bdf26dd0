"""API key guard for the analysis routes."""

import logging
import secrets

from fastapi import Depends
from fastapi import HTTPException
from fastapi import status
from fastapi.security import APIKeyHeader

from app.core.config import settings

logger = logging.getLogger(__name__)

API_KEY_HEADER_NAME = "X-API-Key"

# A missing header is answered with the same 403 as a wrong key
api_key_header = APIKeyHeader(name=API_KEY_HEADER_NAME, auto_error=False)


def _forbidden() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API Key")


async def verify_api_key(key: str | None = Depends(api_key_header)) -> bool:
    """FastAPI dependency accepting only requests that carry the configured key.

    A server without an ``API_KEY`` refuses every request.

    Raises:
        HTTPException: 403 when the header is missing, wrong, or no key is configured.
    """
    expected = settings.api_key
    if not expected:
        logger.critical("No API_KEY is configured on the server; refusing analysis request.")
        raise _forbidden()

    if not key:
        logger.warning("Analysis request without %s header", API_KEY_HEADER_NAME)
        raise _forbidden()

    if not secrets.compare_digest(key.encode(), expected.encode()):
        logger.warning("Analysis request with an invalid API key")
        raise _forbidden()
    return True

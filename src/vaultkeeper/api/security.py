# API Security - Session token
#
# Every vault route requires the X-Session-Token header. When the host vault
# layer hands a token down (VAULTKEEPER_SESSION_TOKEN) that token is used and
# never served back; otherwise one is generated per process and the local
# frontend fetches it from /api/session.

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from ..core import Settings

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 16

_SESSION_TOKEN: Optional[str] = None
_TOKEN_CONFIGURED = False


def initialize_session_token(settings: Optional[Settings] = None) -> str:
    """
    Install the session token for this server instance.

    Args:
        settings: Source of a host-provided token; a 256-bit URL-safe token
            is generated when it carries none.

    Raises:
        ValueError: The configured token is shorter than MIN_TOKEN_LENGTH.
    """
    global _SESSION_TOKEN, _TOKEN_CONFIGURED
    configured = settings.session_token if settings is not None else None

    if configured:
        if len(configured) < MIN_TOKEN_LENGTH:
            raise ValueError(
                f"VAULTKEEPER_SESSION_TOKEN must be at least {MIN_TOKEN_LENGTH} characters"
            )
        _SESSION_TOKEN, _TOKEN_CONFIGURED = configured, True
        logger.info("Vault API using the configured session token")
    else:
        _SESSION_TOKEN, _TOKEN_CONFIGURED = secrets.token_urlsafe(32), False
        logger.debug("Vault API generated a session token")
    return _SESSION_TOKEN


def session_token_is_configured() -> bool:
    return _TOKEN_CONFIGURED


def get_session_token() -> str:
    if _SESSION_TOKEN is None:
        raise RuntimeError("Session token not initialized")
    return _SESSION_TOKEN


def _reject(status_code: int, detail: str) -> HTTPException:
    logger.warning("Vault request rejected: %s", detail)
    return HTTPException(status_code=status_code, detail=detail)


async def verify_session_token(x_session_token: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency guarding the vault routes.

    Raises:
        HTTPException: 503 before startup, 401 on a missing or wrong token
    """
    expected = _SESSION_TOKEN
    if expected is None:
        raise _reject(status.HTTP_503_SERVICE_UNAVAILABLE, "Vault API not started")

    if not x_session_token or not secrets.compare_digest(
        x_session_token.encode(), expected.encode()
    ):
        raise _reject(status.HTTP_401_UNAUTHORIZED, "Missing or invalid X-Session-Token header")

    return x_session_token

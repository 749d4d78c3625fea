"""
modules/auth.py — Service Token Exchange
==========================================
Holders get their token at enrollment. Services (the issuing authority and
registry operators) trade a configured API key for a short-lived bearer
token carrying their scope:

    issuer → POST /credentials/issue, POST /credentials/revoke
    admin  → POST /did, PUT /did/{did}/deactivate

A scope whose API key is not configured cannot be obtained at all.
"""

import hmac
import logging

from config import settings
from core.crypto import crypto_engine
from core.errors import InvalidInput, Unauthorized
from core.registry import write_audit
from modules.credentials import current_issuer

logger = logging.getLogger("bharatid.modules.auth")

HOLDER_SCOPE = "holder"
ISSUER_SCOPE = "issuer"
ADMIN_SCOPE = "admin"

ADMIN_SUBJECT = "registry-admin"


def _configured_key(scope: str) -> str:
    if scope == ISSUER_SCOPE:
        return settings.ISSUER_API_KEY
    if scope == ADMIN_SCOPE:
        return settings.ADMIN_API_KEY
    raise InvalidInput(f"Scope '{scope}' cannot be requested with an API key.")


def _subject_for(scope: str) -> str:
    return current_issuer().did if scope == ISSUER_SCOPE else ADMIN_SUBJECT


async def exchange_api_key(api_key: str, scope: str) -> dict:
    """API key → bearer token for ``scope``. Raises Unauthorized on any mismatch."""
    expected = _configured_key(scope)
    if not expected or not hmac.compare_digest(api_key.encode(), expected.encode()):
        logger.warning(f"Rejected API key for scope '{scope}'")
        raise Unauthorized("Invalid API key.")

    subject = _subject_for(scope)
    await write_audit("SERVICE_TOKEN_ISSUED", subject)
    logger.info(f"Service token issued for scope '{scope}'")
    return {
        "accessToken": crypto_engine.create_access_token(subject, {"scope": scope}),
        "tokenType": "bearer",
        "scope": scope,
        "expiresIn": settings.JWT_EXPIRY_MINUTES * 60,
    }

"""
api/auth.py — Bearer Token Dependencies

Every protected route reads an HS256 bearer token (see core/crypto.py) and
checks its ``scope`` claim:

    holder  → minted at enrollment, subject is the holder DID
    issuer  → minted at /auth/token, subject is the issuer DID
    admin   → minted at /auth/token, registry operators

No token → 401 Unauthorized. Wrong scope → 403 Forbidden.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from core.crypto import crypto_engine
from core.errors import Forbidden, Unauthorized
from core.identity import is_valid_did
from modules.auth import HOLDER_SCOPE

bearer_scheme = HTTPBearer(auto_error=False)


async def token_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    if credentials is None:
        raise Unauthorized("Bearer token required.")
    try:
        return crypto_engine.verify_token(credentials.credentials)
    except JWTError as exc:
        raise Unauthorized("Invalid or expired token.") from exc


def require_scope(scope: str):
    """Dependency factory: the token's claims, provided it carries ``scope``."""

    async def dependency(claims: dict = Depends(token_claims)) -> dict:
        if claims.get("scope") != scope:
            raise Forbidden(f"This operation requires the '{scope}' scope.")
        return claims

    return dependency


async def current_holder(claims: dict = Depends(require_scope(HOLDER_SCOPE))) -> str:
    """Holder DID from the bearer token."""
    holder_did = claims.get("sub")
    if not is_valid_did(holder_did):
        raise Unauthorized("Token subject is not a Bharat-ID DID.")
    return holder_did

"""
api/routes_auth.py — Service Authentication

Endpoints:
    POST /auth/token   → Exchange an issuer/admin API key for a bearer token
"""

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from modules.auth import exchange_api_key

router = APIRouter()


class TokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(alias="apiKey", min_length=1)
    scope: str                                                # "issuer" | "admin"


@router.post("/token")
async def service_token(body: TokenRequest):
    return await exchange_api_key(body.api_key, body.scope)

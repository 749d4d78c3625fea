"""
api/routes_verify.py — Relying-Party Verification Endpoints

Endpoints:
    POST /verify/presentation   → Verify every credential in a presentation
    GET  /verify/status/{did}   → Is this DID registered and active?

Open to any relying party; nothing here needs a token.
"""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from modules.credentials import did_status, verify_presentation

router = APIRouter()


class PresentationRequest(BaseModel):
    presentation: Any = None            # {"verifiableCredential": [...] | {...}}


@router.post("/presentation")
async def verify_presentation_route(body: PresentationRequest):
    """200 with per-credential outcomes; 400 only if no credentials were presented."""
    return await verify_presentation(body.presentation)


@router.get("/status/{did}")
async def did_status_route(did: str):
    return await did_status(did)

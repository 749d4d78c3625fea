"""
api/routes_enrollment.py — Enrollment API Endpoints

Endpoints:
    POST /enrollment/options  → WebAuthn registration options
    POST /enrollment/verify   → Verify authenticator response, mint DID
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from modules.enrollment import complete_enrollment, start_enrollment

router = APIRouter()


class EnrollmentVerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    credential: Dict[str, Any]                              # PublicKeyCredential JSON from the browser
    user_id: Optional[str] = Field(default=None, alias="userId")


@router.post("/options")
async def enrollment_options():
    return start_enrollment()


@router.post("/verify", status_code=201)
async def enrollment_verify(body: EnrollmentVerifyRequest, request: Request):
    """
    Finish registration. The device fingerprint uses the client address and
    User-Agent alongside the credential id.
    """
    return await complete_enrollment(
        credential=body.credential,
        user_id=body.user_id,
        client_address=request.client.host if request.client else "unknown",
        user_agent=request.headers.get("user-agent", "unknown"),
    )

"""
api/routes_credentials.py — Verifiable Credential API Endpoints

Endpoints:
    POST /credentials/issue             → Issue a signed credential      (issuer scope)
    POST /credentials/verify            → Verify a presented credential
    POST /credentials/revoke            → Revoke by credential id        (issuer scope)
    GET  /credentials/status/{id}       → Revocation status
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from api.auth import require_scope
from core.credentials import DEFAULT_CREDENTIAL_TYPE
from modules.auth import ISSUER_SCOPE
from modules.credentials import issue, revocation_status, revoke, verify

router = APIRouter()


class IssueCredentialRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subject_did: str = Field(alias="subjectDID")
    claims: Dict[str, Any]                                      # e.g. {"name": "...", "ageOver18": true}
    validity_period: Optional[int] = Field(default=None, alias="validityPeriod")   # days
    credential_type: str = Field(default=DEFAULT_CREDENTIAL_TYPE, alias="credentialType")


class VerifyCredentialRequest(BaseModel):
    credential: Any


class RevokeCredentialRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    credential_id: str = Field(alias="credentialId")
    issuer_did: str = Field(alias="issuerDID")
    reason: Optional[str] = None


@router.post("/issue", status_code=201, dependencies=[Depends(require_scope(ISSUER_SCOPE))])
async def issue_credential(body: IssueCredentialRequest):
    return await issue(
        subject_did=body.subject_did,
        claims=body.claims,
        validity_days=body.validity_period,
        credential_type=body.credential_type,
    )


@router.post("/verify")
async def verify_credential(body: VerifyCredentialRequest):
    """Always 200: the outcome says whether the credential is valid and why not."""
    return await verify(body.credential)


@router.post("/revoke", dependencies=[Depends(require_scope(ISSUER_SCOPE))])
async def revoke_credential(body: RevokeCredentialRequest):
    return await revoke(body.credential_id, body.issuer_did, body.reason)


@router.get("/status/{credential_id}")
async def credential_status(credential_id: str):
    return await revocation_status(credential_id)

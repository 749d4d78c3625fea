"""
api/routes_consent.py — Consent Sharing API Endpoints

Endpoints:
    POST /consent/share   → Share approved claims with a relying party

Requires the holder token issued at enrollment; its subject is the holder DID.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from api.auth import current_holder
from modules.consent import share_with_relying_party

router = APIRouter()


class ShareRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    credential: Dict[str, Any]
    relying_party_id: str = Field(alias="relyingPartyId")            # e.g. "bank.example.in"
    requested_fields: List[str] = Field(alias="requestedFields")
    approved_fields: List[str] = Field(alias="approvedFields")
    duration_days: int = Field(default=30, alias="durationDays")


@router.post("/share")
async def share(body: ShareRequest, holder_did: str = Depends(current_holder)):
    return await share_with_relying_party(
        holder_did=holder_did,
        credential=body.credential,
        relying_party_id=body.relying_party_id,
        requested_fields=body.requested_fields,
        approved_fields=body.approved_fields,
        duration_days=body.duration_days,
    )

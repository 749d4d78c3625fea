"""
api/routes_did.py — DID Registry API Endpoints
================================================
Endpoints:
    GET  /did/{did}             → Resolve a DID Document
    GET  /did/{did}/keys        → Verification methods only
    POST /did                   → Register a DID Document record   (admin scope)
    PUT  /did/{did}/deactivate  → Deactivate a DID                 (admin scope)
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from api.auth import require_scope
from core.identity import short_did, validate_did
from core.registry import ServiceEndpoint, new_record, registry, write_audit
from core.resolver import build_did_document, resolver
from modules.auth import ADMIN_SCOPE

router = APIRouter()
logger = logging.getLogger("bharatid.api.did")


# ── Request schemas ───────────────────────────────────────────────────────────
class RegisterDIDRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    did: str
    public_key: str = Field(alias="publicKey")                # PEM or base64 DER SPKI
    services: List[ServiceEndpoint] = Field(default_factory=list)


# ── Endpoints ─────────────────────────────────────────────────────────────────
@router.get("/{did}")
async def resolve_did(did: str):
    return await resolver.resolve(did)


@router.get("/{did}/keys")
async def resolve_did_keys(did: str):
    return await resolver.resolve_keys(did)


@router.post("", status_code=201, dependencies=[Depends(require_scope(ADMIN_SCOPE))])
async def register_did(body: RegisterDIDRequest):
    """
    Publish a DID Document record. The key is validated and stored as PEM;
    the document itself is rebuilt on every resolve.
    """
    record = await registry.add_record(new_record(body.did, body.public_key, body.services))
    await write_audit("DID_REGISTERED", record.did)
    logger.info(f"DID registered: {short_did(record.did)}")
    return {"did": record.did, "document": build_did_document(record), "message": "DID registered."}


@router.put("/{did}/deactivate", dependencies=[Depends(require_scope(ADMIN_SCOPE))])
async def deactivate_did(did: str):
    validate_did(did)
    record = await registry.deactivate(did)
    await write_audit("DID_DEACTIVATED", record.did)
    logger.info(f"DID deactivated: {short_did(record.did)}")
    return {"did": record.did, "deactivated": True, "message": "DID deactivated."}

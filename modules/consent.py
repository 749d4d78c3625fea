"""
modules/consent.py — Selective Disclosure Module
==================================================
A holder shares a subset of a credential's claims with a relying party.

Flow:
    holder presents credential → verify it → build consent grant →
    re-issue only the approved fields to the pairwise DID → return

The relying party never sees the holder's primary DID, and the grant
itself is returned to the holder rather than stored.
"""

import logging
from datetime import timezone
from typing import Any, Dict, List

from starlette.concurrency import run_in_threadpool

from core.consent import create_consent_grant, disclose_claims
from core.credentials import issue_credential, parse_credential, parse_timestamp
from core.errors import Forbidden, InvalidInput
from core.registry import write_audit
from modules.credentials import current_issuer, verify

logger = logging.getLogger("bharatid.modules.consent")

DISCLOSURE_CREDENTIAL_TYPE = "ConsentedDisclosureCredential"


async def share_with_relying_party(
    holder_did: str,
    credential: Dict[str, Any],
    relying_party_id: str,
    requested_fields: List[str],
    approved_fields: List[str],
    duration_days: int = 30,
) -> dict:
    if not relying_party_id or not relying_party_id.strip():
        raise InvalidInput("relyingPartyId is required.")

    # 1. The credential must be about the authenticated holder
    cred = parse_credential(credential)
    if cred is None:
        raise InvalidInput("Presented credential is malformed.", reason="MalformedCredential")
    if cred.subject_did != holder_did:
        raise Forbidden("Credential subject does not match the authenticated holder.")

    # 2. And it must still verify
    outcome = await verify(cred)
    if not outcome["valid"]:
        raise InvalidInput(f"Presented credential was rejected: {outcome['reason']}", reason=outcome["reason"])

    # 3. Grant → disclosed subset
    grant = create_consent_grant(holder_did, relying_party_id, requested_fields, approved_fields, duration_days)
    disclosed = disclose_claims(cred.claims, grant)

    # 4. Re-issue to the pairwise DID, never outliving the source credential
    expires_at = min(grant.expires_at, parse_timestamp(cred.expiration_date))
    validity = expires_at - grant.granted_at.astimezone(timezone.utc)
    shared = await run_in_threadpool(
        issue_credential,
        current_issuer(),
        grant.pairwise_did,
        disclosed,
        validity,
        DISCLOSURE_CREDENTIAL_TYPE,
        grant.granted_at,
    )

    # 5. Audit under the relying party, not the holder
    await write_audit("CONSENT_SHARED", relying_party_id.strip(), shared.id)

    logger.info(f"Shared {len(grant.fields)} field(s) with {relying_party_id}")
    return {
        "grant": grant.model_dump(mode="json"),
        "credential": shared.to_json(),
    }

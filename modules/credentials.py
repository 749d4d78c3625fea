"""
modules/credentials.py — Credential Issuance & Verification Module
====================================================================
Business logic behind /credentials. Signing and signature checks are CPU
bound and run in the thread pool so the event loop keeps serving requests.

Flow:
    issue  : validate → sign (thread pool) → audit → return credential
    verify : parse → resolve issuer key → check signature + expiry → check revocation
    verify_presentation : verify every enclosed credential concurrently
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from starlette.concurrency import run_in_threadpool

from config import settings
from core.credentials import (
    DEFAULT_CREDENTIAL_TYPE,
    IssuerKey,
    VerificationResult,
    format_timestamp,
    issue_credential,
    parse_credential,
    verify_credential,
)
from core.crypto import crypto_engine
from core.errors import DIDDeactivated, Forbidden, InvalidInput, NotFound, VerificationReason
from core.identity import short_did
from core.lifecycle import LifecycleStage, verification_outcome
from core.registry import RevocationEntry, ServiceEndpoint, new_record, registry, write_audit
from core.resolver import resolver

logger = logging.getLogger("bharatid.modules.credentials")

ISSUER_SERVICE_TYPE = "CredentialIssuerService"


def current_issuer() -> IssuerKey:
    return IssuerKey.from_private_key(crypto_engine.issuer_private_key, settings.ISSUER_ID)


async def register_issuer_did() -> str:
    """
    Publish this server's issuer DID so verifiers can resolve its key.
    Called once on startup; a no-op if the DID is already registered.
    """
    issuer = current_issuer()
    existing = await registry.get_record(issuer.did)
    if existing is not None and existing.deactivated:
        logger.warning(f"Issuer DID {short_did(issuer.did)} is deactivated; its credentials will not verify")
    if existing is None:
        service = ServiceEndpoint(
            id="issuer",
            type=ISSUER_SERVICE_TYPE,
            service_endpoint=settings.ISSUER_SERVICE_ENDPOINT,
        )
        await registry.add_record(new_record(issuer.did, issuer.public_key_pem, [service]))
        await write_audit("DID_REGISTERED", issuer.did)
        logger.info(f"Issuer DID registered: {short_did(issuer.did)}")
    return issuer.did


def validity_from_days(days: Optional[int]) -> timedelta:
    """Requested validity in days → timedelta, capped at MAX_CREDENTIAL_VALIDITY_DAYS."""
    if days is None:
        days = settings.CREDENTIAL_DEFAULT_VALIDITY_DAYS
    if days < 1:
        raise InvalidInput("validityPeriod must be at least one day.")
    return timedelta(days=min(days, settings.MAX_CREDENTIAL_VALIDITY_DAYS))


async def issue(
    subject_did: str,
    claims: Dict[str, Any],
    validity_days: Optional[int] = None,
    credential_type: str = DEFAULT_CREDENTIAL_TYPE,
) -> dict:
    """
    Issue a signed credential for ``subject_did``.
    The claims live only in the returned credential; nothing is stored.
    """
    issuer = current_issuer()
    validity = validity_from_days(validity_days)

    # 1. Sign
    credential = await run_in_threadpool(
        issue_credential, issuer, subject_did, claims, validity, credential_type
    )

    # 2. Audit (credential id only, never the claims)
    await write_audit("CREDENTIAL_ISSUED", issuer.did, credential.id)

    logger.info(f"Credential {credential.id} issued to {short_did(subject_did)}")
    return {
        "credential": credential.to_json(),
        "credentialId": credential.id,
        "stage": LifecycleStage.CREDENTIAL_ISSUED.value,
    }


async def verify(credential: Any) -> dict:
    """
    Relying-party verification. Always answers with an outcome; a bad
    credential is a rejection, not an error.
    """
    cred = parse_credential(credential)
    if cred is None:
        return _outcome(VerificationResult.rejected(VerificationReason.MALFORMED_CREDENTIAL))

    # 1. Resolve the issuer's public key
    try:
        issuer_key_pem = await resolver.public_key_pem(cred.issuer)
    except NotFound:
        return _outcome(VerificationResult.rejected(VerificationReason.UNKNOWN_ISSUER), cred.id)
    except DIDDeactivated:
        return _outcome(VerificationResult.rejected(VerificationReason.ISSUER_DEACTIVATED), cred.id)

    # 2. Signature and expiry
    result = await run_in_threadpool(verify_credential, cred, issuer_key_pem)

    # 3. Revocation list
    if result.valid and await registry.get_revocation(cred.id) is not None:
        result = VerificationResult.rejected(VerificationReason.REVOKED)

    logger.info(f"Credential {cred.id} verified: {'valid' if result.valid else result.reason}")
    return _outcome(result, cred.id)


def _outcome(result: VerificationResult, credential_id: Optional[str] = None) -> dict:
    return {
        "valid": result.valid,
        "reason": result.reason,
        "credentialId": credential_id,
        "stage": verification_outcome(result.valid).value,
    }


async def verify_presentation(presentation: Any) -> dict:
    """
    Verify every credential in a presentation. The presentation is verified
    only if all of them are.
    """
    if not isinstance(presentation, dict) or "verifiableCredential" not in presentation:
        raise InvalidInput("presentation.verifiableCredential is required.")
    credentials = presentation["verifiableCredential"]
    if not isinstance(credentials, list):
        credentials = [credentials]
    if not credentials:
        raise InvalidInput("Presentation contains no credentials.")
    if len(credentials) > settings.MAX_PRESENTATION_CREDENTIALS:
        raise InvalidInput(
            f"Presentation holds {len(credentials)} credentials; "
            f"at most {settings.MAX_PRESENTATION_CREDENTIALS} are accepted."
        )

    outcomes = await asyncio.gather(*(verify(c) for c in credentials))
    results: List[dict] = [
        {**outcome, "issuer": c.get("issuer") if isinstance(c, dict) else None}
        for c, outcome in zip(credentials, outcomes)
    ]
    verified = all(r["valid"] for r in results)

    logger.info(f"Presentation of {len(results)} credential(s) verified: {verified}")
    return {"verified": verified, "results": results, "totalCredentials": len(results)}


async def did_status(did: str) -> dict:
    return await resolver.status(did)


async def revoke(credential_id: str, issuer_did: str, reason: Optional[str] = None) -> dict:
    """Add a credential id to the revocation list. Only this server's issuer may revoke."""
    if not credential_id or not credential_id.strip():
        raise InvalidInput("credentialId is required.")
    issuer = current_issuer()
    if issuer_did != issuer.did:
        raise Forbidden("Only the issuing authority can revoke its credentials.")

    entry = await registry.add_revocation(RevocationEntry(
        credential_id=credential_id,
        issuer_did=issuer.did,
        reason=reason or "Revoked by issuer",
    ))
    await write_audit("CREDENTIAL_REVOKED", issuer.did, credential_id)

    logger.info(f"Credential {credential_id} revoked")
    return {
        "status": "revoked",
        "credentialId": entry.credential_id,
        "revokedAt": format_timestamp(entry.revoked_at),
    }


async def revocation_status(credential_id: str) -> dict:
    entry = await registry.get_revocation(credential_id)
    if entry is None:
        return {"credentialId": credential_id, "revoked": False}
    return {
        "credentialId": credential_id,
        "revoked": True,
        "revokedAt": format_timestamp(entry.revoked_at),
        "reason": entry.reason,
    }

"""
modules/enrollment.py — Device Enrollment Module
==================================================
Turns a WebAuthn (passkey) registration into a Bharat-ID DID.

Flow:
    /enrollment/options → challenge stored under a fresh user handle
    /enrollment/verify  → verify attestation → COSE key → device id →
                          derive DID → register public key → session token

The private key never leaves the authenticator. Only the public key and
the DID reach the registry.
"""

import json
import logging
import secrets
from typing import Any, Dict, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from starlette.concurrency import run_in_threadpool
from webauthn import generate_registration_options, options_to_json, verify_registration_response
from webauthn.helpers import bytes_to_base64url, decode_credential_public_key
from webauthn.helpers.decoded_public_key_to_cryptography import decoded_public_key_to_cryptography
from webauthn.helpers.exceptions import (
    InvalidAuthenticatorDataStructure,
    InvalidCBORData,
    InvalidJSONStructure,
    InvalidPublicKeyStructure,
    InvalidRegistrationResponse,
    UnsupportedPublicKeyType,
)
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from config import settings
from core.challenges import challenge_store
from core.crypto import crypto_engine
from core.errors import DuplicateEnrollment, EnrollmentFailed, InvalidInput
from core.identity import compute_device_id, derive_did, short_did
from core.lifecycle import LifecycleStage
from core.registry import new_record, registry, write_audit
from modules.auth import HOLDER_SCOPE

logger = logging.getLogger("bharatid.modules.enrollment")

_ATTESTATION_ERRORS = (
    InvalidRegistrationResponse,
    InvalidJSONStructure,
    InvalidCBORData,
    InvalidAuthenticatorDataStructure,
)


def start_enrollment() -> dict:
    """
    Registration options for a brand-new citizen.
    User verification (biometric / PIN) is always required.
    """
    challenge_store.cleanup_expired()

    user_id = secrets.token_bytes(16)
    user_handle = bytes_to_base64url(user_id)
    options = generate_registration_options(
        rp_id=settings.RP_ID,
        rp_name=settings.RP_NAME,
        user_id=user_id,
        user_name=f"citizen-{user_handle[:8]}",
        user_display_name="Bharat Citizen",
        attestation=AttestationConveyancePreference.NONE,
        authenticator_selection=AuthenticatorSelectionCriteria(
            user_verification=UserVerificationRequirement.REQUIRED,
            resident_key=ResidentKeyRequirement.PREFERRED,
        ),
    )
    challenge_store.put(user_handle, options.challenge)

    logger.info(f"Enrollment started ({len(challenge_store)} pending)")
    return {"userId": user_handle, "options": json.loads(options_to_json(options))}


def public_key_from_cose(credential_public_key: bytes):
    """COSE_Key bytes from the attestation → cryptography public key."""
    try:
        decoded = decode_credential_public_key(credential_public_key)
        return decoded_public_key_to_cryptography(decoded)
    except (InvalidPublicKeyStructure, UnsupportedPublicKeyType, UnsupportedAlgorithm, ValueError) as exc:
        raise EnrollmentFailed("Authenticator returned an unsupported public key.") from exc


async def complete_enrollment(
    credential: Dict[str, Any],
    user_id: Optional[str],
    client_address: str,
    user_agent: str,
) -> dict:
    """
    Verify the authenticator's registration response and mint the DID.
    Raises EnrollmentFailed for any attestation problem and
    DuplicateEnrollment when this device already holds a DID.
    """
    # 1. Find the pending challenge
    response = credential.get("response") if isinstance(credential, dict) else None
    user_handle = user_id or (response or {}).get("userHandle")
    if not user_handle:
        raise InvalidInput("userId is required to complete enrollment.")
    challenge = challenge_store.pop(user_handle)
    if challenge is None:
        raise EnrollmentFailed("Enrollment session expired or was never started. Please try again.")

    # 2. Verify the attestation
    try:
        verification = verify_registration_response(
            credential=credential,
            expected_challenge=challenge,
            expected_origin=settings.EXPECTED_ORIGIN,
            expected_rp_id=settings.RP_ID,
            require_user_verification=True,
        )
    except _ATTESTATION_ERRORS as exc:
        logger.warning(f"Registration response rejected: {exc}")
        raise EnrollmentFailed(f"Authenticator response could not be verified: {exc}") from exc

    # 3. Public key → device id → DID
    public_key = public_key_from_cose(verification.credential_public_key)
    device_id = compute_device_id(verification.credential_id, client_address, user_agent)
    did = await run_in_threadpool(derive_did, public_key, device_id)

    # 4. One DID per device
    if await registry.get_record(did) is not None:
        raise DuplicateEnrollment("This device already has a Bharat-ID. Please login instead.", did=did)

    # 5. Register the public key
    await registry.add_record(new_record(did, public_key))
    await write_audit("DID_REGISTERED", "enrollment")

    logger.info(f"New citizen enrolled: {short_did(did)}")
    return {
        "did": did,
        "stage": LifecycleStage.DID_DERIVED.value,
        "accessToken": crypto_engine.create_access_token(did, {"scope": HOLDER_SCOPE}),
        "tokenType": "bearer",
    }

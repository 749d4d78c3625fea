"""
core/identity.py — DID Derivation Engine
==========================================
Maps (public key, device identifier) → a Bharat-ID DID.

Format:  did:bharat:<64 lowercase hex>   (75 characters total)

    identifier = SHA-256( DER(public key) ":" device_id ":" DID_SALT )

The DER SubjectPublicKeyInfo encoding is self-delimiting, so the
concatenation is unambiguous. Same inputs → same DID, which is how
re-enrollment of an already registered device is detected.

Everything here is a pure function: no I/O, no shared state, safe to call
from any thread.
"""

import base64
import hashlib
import re
from typing import Optional

from config import settings
from core.crypto import PublicKeyInput, hash_sha256, public_key_der
from core.errors import InvalidDeviceId, InvalidInput, MalformedDID

DID_METHOD = "bharat"
DID_PREFIX = f"did:{DID_METHOD}:"
DID_IDENTIFIER_LENGTH = 64
DID_LENGTH = len(DID_PREFIX) + DID_IDENTIFIER_LENGTH     # 75

DID_PATTERN = re.compile(rf"^did:{DID_METHOD}:[0-9a-f]{{{DID_IDENTIFIER_LENGTH}}}$")
KEY_FRAGMENT = "key-1"

_SEPARATOR = b":"


def derive_did(public_key: PublicKeyInput, device_id: str, salt: Optional[str] = None) -> str:
    """
    Derive the DID for a public key bound to a device.

    Raises InvalidKeyFormat if the key cannot be parsed and InvalidDeviceId
    if the device identifier is missing or blank.
    """
    if not isinstance(device_id, str) or not device_id.strip():
        raise InvalidDeviceId("Device identifier must be a non-empty string.")
    key_bytes = public_key_der(public_key)
    salt = settings.DID_SALT if salt is None else salt
    identifier = hash_sha256(
        key_bytes, _SEPARATOR, device_id.encode("utf-8"), _SEPARATOR, salt.encode("utf-8"),
    )
    return DID_PREFIX + identifier


def derive_pairwise_did(subject_did: str, relying_party_id: str, salt: Optional[str] = None) -> str:
    """
    Per-relying-party identifier for a subject.
    Same subject + same relying party → same DID; different relying parties
    get unlinkable DIDs. The result follows the normal DID grammar.
    """
    validate_did(subject_did)
    if not isinstance(relying_party_id, str) or not relying_party_id.strip():
        raise InvalidInput("Relying party identifier must be a non-empty string.")
    salt = settings.DID_SALT if salt is None else salt
    raw = f"{subject_did}:{relying_party_id}:{salt}".encode("utf-8")
    return DID_PREFIX + hashlib.sha256(raw).hexdigest()


def compute_device_id(credential_id: bytes, client_address: str, user_agent: str) -> str:
    """
    Device identifier used at enrollment: a hash of the WebAuthn credential id,
    the client address and the user agent (32 hex chars). The raw values are
    never stored.
    """
    return hash_sha256(
        base64_credential_id(credential_id).encode(),
        (client_address or "unknown").encode(),
        (user_agent or "unknown").encode(),
    )[:32]


def base64_credential_id(credential_id: bytes) -> str:
    return base64.b64encode(credential_id).decode()


def key_id_for(did: str) -> str:
    """Id of the (single) verification method in a DID Document."""
    return f"{did}#{KEY_FRAGMENT}"


def is_valid_did(value) -> bool:
    return isinstance(value, str) and DID_PATTERN.fullmatch(value) is not None


def validate_did(value) -> str:
    """Return ``value`` unchanged if it is a well-formed DID, else raise MalformedDID."""
    if not is_valid_did(value):
        raise MalformedDID(f"'{_preview(value)}' is not a valid {DID_PREFIX}<64 hex> identifier.")
    return value


def short_did(did: str) -> str:
    """Truncated DID for log lines."""
    return f"{did[:24]}..." if isinstance(did, str) and len(did) > 24 else str(did)


def _preview(value) -> str:
    text = str(value)
    return text if len(text) <= 80 else text[:77] + "..."

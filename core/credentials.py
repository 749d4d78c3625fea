"""
core/credentials.py — Verifiable Credential Issuer
====================================================
Builds, signs, and verifies W3C-style Verifiable Credentials.

Issuance is pure request/response: nothing here stores claims. A credential
is immutable once signed; changing a claim means issuing a new one.

Signing:
    payload = canonical JSON of every credential field except "proof"
              (sorted keys, compact separators, UTF-8)
    proof   = detached ES256 JWS over that payload

Two issuances of the same claims differ only in id / issuanceDate /
expirationDate.
"""

import json
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.crypto import (
    PublicKeyInput,
    jws_key_id,
    public_key_pem,
    sign_detached,
    verify_detached,
)
from core.errors import (
    InvalidClaims,
    InvalidInput,
    InvalidKeyFormat,
    InvalidSubject,
    VerificationReason,
)
from core.identity import derive_did, is_valid_did, key_id_for, short_did

logger = logging.getLogger("bharatid.credentials")

CREDENTIALS_CONTEXT = [
    "https://www.w3.org/2018/credentials/v1",
    "https://praman.gov.in/credentials/v1",
]
DEFAULT_CREDENTIAL_TYPE = "IdentityAttributeCredential"
PROOF_TYPE = "JsonWebSignature2020"
PROOF_PURPOSE = "assertionMethod"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

ClaimValue = Union[str, int, float, bool, None]


# ── Models ────────────────────────────────────────────────────────────────────
class CredentialProof(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    type: str
    created: str
    proof_purpose: str = Field(alias="proofPurpose")
    verification_method: str = Field(alias="verificationMethod")
    jws: str


class VerifiableCredential(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    context: List[str] = Field(alias="@context")
    id: str
    type: List[str]
    issuer: str
    issuance_date: str = Field(alias="issuanceDate")
    expiration_date: str = Field(alias="expirationDate")
    credential_subject: Dict[str, Any] = Field(alias="credentialSubject")
    proof: CredentialProof

    @property
    def subject_did(self) -> Optional[str]:
        return self.credential_subject.get("id")

    @property
    def claims(self) -> Dict[str, Any]:
        return {k: v for k, v in self.credential_subject.items() if k != "id"}

    def to_json(self) -> dict:
        """Wire form (W3C field names)."""
        return self.model_dump(by_alias=True)


class VerificationResult(BaseModel):
    valid: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "VerificationResult":
        return cls(valid=True)

    @classmethod
    def rejected(cls, reason: VerificationReason) -> "VerificationResult":
        return cls(valid=False, reason=reason.value)


@dataclass(frozen=True)
class IssuerKey:
    """An issuer's signing key together with the DID it is published under."""

    did: str
    private_key_pem: str
    public_key_pem: str

    @property
    def key_id(self) -> str:
        return key_id_for(self.did)

    @classmethod
    def from_private_key(cls, private_key: ec.EllipticCurvePrivateKey, issuer_id: str) -> "IssuerKey":
        if not isinstance(private_key, ec.EllipticCurvePrivateKey) or private_key.curve.name != "secp256r1":
            raise InvalidKeyFormat("Issuer key must be an ECDSA P-256 private key.")
        public_key = private_key.public_key()
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        return cls(
            did=derive_did(public_key, issuer_id),
            private_key_pem=private_pem,
            public_key_pem=public_key_pem(public_key),
        )


# ── Canonicalization ──────────────────────────────────────────────────────────
def canonical_json(value: Any) -> bytes:
    return json.dumps(
        value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False,
    ).encode("utf-8")


def canonicalize_claims(claims: Mapping[str, ClaimValue]) -> bytes:
    """Validate a claim set and return its deterministic byte encoding."""
    _validate_claims(claims)
    return canonical_json(dict(claims))


def signing_payload(document: Mapping[str, Any]) -> bytes:
    """Bytes covered by the proof: the whole credential minus the proof itself."""
    return canonical_json({k: v for k, v in document.items() if k != "proof"})


def _validate_claims(claims) -> None:
    if not isinstance(claims, Mapping) or not claims:
        raise InvalidClaims("Claims must be a non-empty object of key/value pairs.")
    for key, value in claims.items():
        if not isinstance(key, str) or not key.strip():
            raise InvalidClaims("Claim names must be non-empty strings.")
        if key == "id":
            raise InvalidClaims("'id' is reserved for the subject DID.")
        if value is not None and not isinstance(value, (str, int, float, bool)):
            raise InvalidClaims(f"Claim '{key}' must be a scalar (string, number, boolean or null).")
        if isinstance(value, float) and not math.isfinite(value):
            raise InvalidClaims(f"Claim '{key}' must be a finite number.")


# ── Issuance ──────────────────────────────────────────────────────────────────
def issue_credential(
    issuer_key: IssuerKey,
    subject_did: str,
    claims: Mapping[str, ClaimValue],
    validity: timedelta,
    credential_type: str = DEFAULT_CREDENTIAL_TYPE,
    now: Optional[datetime] = None,
) -> VerifiableCredential:
    """
    Issue a signed credential binding ``claims`` to ``subject_did``.

    Raises InvalidSubject for a malformed subject DID, InvalidClaims for a bad
    claim set, InvalidInput for a non-positive validity or empty type, and
    CryptoFailure if signing fails.
    """
    if not is_valid_did(subject_did):
        raise InvalidSubject("subjectDID is not a well-formed DID.")
    _validate_claims(claims)
    if not isinstance(validity, timedelta) or validity <= timedelta(0):
        raise InvalidInput("Validity period must be a positive duration.")
    if not isinstance(credential_type, str) or not credential_type.strip():
        raise InvalidInput("Credential type must be a non-empty string.")

    issued_at = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).replace(microsecond=0)
    document = {
        "@context": list(CREDENTIALS_CONTEXT),
        "id": f"urn:uuid:{uuid.uuid4()}",
        "type": ["VerifiableCredential", credential_type],
        "issuer": issuer_key.did,
        "issuanceDate": format_timestamp(issued_at),
        "expirationDate": format_timestamp(issued_at + validity),
        "credentialSubject": {"id": subject_did, **dict(claims)},
    }
    document["proof"] = {
        "type": PROOF_TYPE,
        "created": document["issuanceDate"],
        "proofPurpose": PROOF_PURPOSE,
        "verificationMethod": issuer_key.key_id,
        "jws": sign_detached(signing_payload(document), issuer_key.private_key_pem, issuer_key.key_id),
    }
    credential = VerifiableCredential.model_validate(document)
    logger.debug(f"Signed {credential.id} for subject {short_did(subject_did)}")
    return credential


# ── Verification ──────────────────────────────────────────────────────────────
def verify_credential(
    credential: Union[VerifiableCredential, Mapping[str, Any]],
    issuer_public_key: PublicKeyInput,
    now: Optional[datetime] = None,
) -> VerificationResult:
    """
    Check a credential against its issuer's public key.
    Never raises for bad credentials: the outcome is a VerificationResult with
    reason SignatureMismatch, Expired or MalformedCredential.
    """
    cred = parse_credential(credential)
    if cred is None:
        return VerificationResult.rejected(VerificationReason.MALFORMED_CREDENTIAL)

    try:
        expires_at = parse_timestamp(cred.expiration_date)
        parse_timestamp(cred.issuance_date)
        payload = signing_payload(cred.to_json())
    except (TypeError, ValueError):
        return VerificationResult.rejected(VerificationReason.MALFORMED_CREDENTIAL)

    if jws_key_id(cred.proof.jws) != cred.proof.verification_method:
        return VerificationResult.rejected(VerificationReason.SIGNATURE_MISMATCH)

    try:
        signature_ok = verify_detached(cred.proof.jws, payload, issuer_public_key)
    except InvalidKeyFormat:
        signature_ok = False
    except ValueError:
        return VerificationResult.rejected(VerificationReason.MALFORMED_CREDENTIAL)
    if not signature_ok:
        return VerificationResult.rejected(VerificationReason.SIGNATURE_MISMATCH)

    if (now or datetime.now(timezone.utc)) >= expires_at:
        return VerificationResult.rejected(VerificationReason.EXPIRED)
    return VerificationResult.ok()


def parse_credential(credential) -> Optional[VerifiableCredential]:
    """Structural parse of a presented credential; None if it is not one of ours."""
    if isinstance(credential, VerifiableCredential):
        cred = credential
    else:
        try:
            cred = VerifiableCredential.model_validate(credential)
        except ValidationError:
            return None
    if not (
        is_valid_did(cred.issuer)
        and is_valid_did(cred.subject_did)
        and "VerifiableCredential" in cred.type
        and cred.proof.verification_method == key_id_for(cred.issuer)
    ):
        return None
    return cred


def format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:                          # registry timestamps are naive UTC
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)

"""
core/errors.py — Error Taxonomy
================================
Every failure the core can raise, each carrying a stable ``code`` and the
HTTP status the API layer renders it with (see api/errors.py).

    InvalidInput        → rejected before any cryptographic work
    CryptoFailure       → hash / signature operation failed
    NotFound            → resolver miss (normal, user-visible)
    Conflict            → duplicate registration / enrollment / revocation
    Unauthorized        → missing, invalid or expired bearer token
    Forbidden           → token lacks the scope the operation needs

Verification-time outcomes (expired, tampered) are NOT exceptions: they come
back as a VerificationResult from core/credentials.py.
"""

from enum import Enum


class BharatIDError(Exception):
    """Base class for all Bharat-ID errors."""

    code = "InternalError"
    status_code = 500

    def __init__(self, message: str = "", **extra):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.extra = extra

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.extra}


# ── Input validation ──────────────────────────────────────────────────────────
class InvalidInput(BharatIDError):
    code = "InvalidInput"
    status_code = 400


class InvalidKeyFormat(InvalidInput):
    code = "InvalidKeyFormat"


class InvalidDeviceId(InvalidInput):
    code = "InvalidDeviceId"


class MalformedDID(InvalidInput):
    code = "MalformedDID"


class InvalidSubject(InvalidInput):
    code = "InvalidSubject"


class InvalidClaims(InvalidInput):
    code = "InvalidClaims"


# ── Crypto ────────────────────────────────────────────────────────────────────
class CryptoFailure(BharatIDError):
    code = "CryptoFailure"
    status_code = 500


# ── Registry / resolution ─────────────────────────────────────────────────────
class NotFound(BharatIDError):
    code = "NotFound"
    status_code = 404


class DIDDeactivated(BharatIDError):
    code = "DIDDeactivated"
    status_code = 410


class Conflict(BharatIDError):
    code = "Conflict"
    status_code = 409


class DuplicateEnrollment(Conflict):
    code = "DuplicateEnrollment"


class RegistryUnavailable(BharatIDError):
    code = "RegistryUnavailable"
    status_code = 503


# ── Enrollment / sessions ─────────────────────────────────────────────────────
class EnrollmentFailed(BharatIDError):
    code = "WebAuthnError"
    status_code = 400


class Unauthorized(BharatIDError):
    code = "Unauthorized"
    status_code = 401


class Forbidden(BharatIDError):
    code = "Forbidden"
    status_code = 403


class InvalidTransition(BharatIDError):
    code = "InvalidTransition"
    status_code = 409


class EnrollmentCapacityExceeded(BharatIDError):
    code = "TooManyPendingEnrollments"
    status_code = 429


# ── Verification reasons (values, not exceptions) ─────────────────────────────
class VerificationReason(str, Enum):
    SIGNATURE_MISMATCH = "SignatureMismatch"
    EXPIRED = "Expired"
    MALFORMED_CREDENTIAL = "MalformedCredential"
    UNKNOWN_ISSUER = "UnknownIssuer"
    ISSUER_DEACTIVATED = "IssuerDeactivated"
    REVOKED = "Revoked"

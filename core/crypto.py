"""
core/crypto.py — Cryptography Engine
======================================
Central place for ALL key handling, hashing, and signing operations.
Every module imports from here — never roll your own crypto elsewhere.

Provides:
- Public key loading + canonical DER encoding  (for DID derivation)
- SHA-256 hashing                              (for DIDs, device ids)
- ES256 detached JWS sign / verify             (for credential proofs)
- Issuer signing key management                (ECDSA P-256)
- JWT session tokens                           (issued at enrollment)
"""

import base64
import binascii
import hashlib
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from jose import jws, jwt
from jose.constants import ALGORITHMS
from jose.exceptions import JWKError, JWSError
from jose.utils import base64url_encode

from config import settings
from core.errors import CryptoFailure, InvalidKeyFormat

logger = logging.getLogger("bharatid.crypto")

PUBLIC_KEY_TYPES = (
    ec.EllipticCurvePublicKey,
    ed25519.Ed25519PublicKey,
    ed448.Ed448PublicKey,
    rsa.RSAPublicKey,
)
PublicKeyInput = Union[bytes, bytearray, memoryview, str, ec.EllipticCurvePublicKey,
                       ed25519.Ed25519PublicKey, ed448.Ed448PublicKey, rsa.RSAPublicKey]

SIGNING_ALGORITHM = ALGORITHMS.ES256

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/_-]+={0,2}$")


# ── Public keys ───────────────────────────────────────────────────────────────
def load_public_key(key: PublicKeyInput):
    """
    Parse any supported public key encoding into a cryptography key object.

    Accepted: key objects, PEM, DER SubjectPublicKeyInfo, base64/base64url of
    DER (what WebAuthn clients send), raw 32-byte Ed25519 keys and SEC1
    P-256 points. Anything else raises InvalidKeyFormat.
    """
    if isinstance(key, PUBLIC_KEY_TYPES):
        return key

    if isinstance(key, str):
        text = key.strip()
        if not text:
            raise InvalidKeyFormat("Public key is empty.")
        if text.startswith("-----BEGIN"):
            return _load_pem(text.encode())
        data = _b64decode(text)
    elif isinstance(key, (bytes, bytearray, memoryview)):
        data = bytes(key)
    else:
        raise InvalidKeyFormat(f"Unsupported public key type: {type(key).__name__}")

    if not data:
        raise InvalidKeyFormat("Public key is empty.")
    if data.lstrip().startswith(b"-----BEGIN"):
        return _load_pem(data.strip())
    return _load_der_or_raw(data)


def public_key_der(key: PublicKeyInput) -> bytes:
    """Canonical encoding used everywhere a key is hashed: DER SubjectPublicKeyInfo."""
    return load_public_key(key).public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def public_key_pem(key: PublicKeyInput) -> str:
    return load_public_key(key).public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


def verification_method_type(key: PublicKeyInput) -> str:
    """W3C verification method type name for a key."""
    key = load_public_key(key)
    if isinstance(key, ec.EllipticCurvePublicKey):
        return {
            "secp256r1": "EcdsaSecp256r1VerificationKey2019",
            "secp256k1": "EcdsaSecp256k1VerificationKey2019",
        }.get(key.curve.name, "JsonWebKey2020")
    if isinstance(key, ed25519.Ed25519PublicKey):
        return "Ed25519VerificationKey2018"
    if isinstance(key, rsa.RSAPublicKey):
        return "RsaVerificationKey2018"
    return "JsonWebKey2020"


def _load_pem(data: bytes):
    try:
        key = serialization.load_pem_public_key(data)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise InvalidKeyFormat("Public key PEM could not be parsed.") from exc
    if not isinstance(key, PUBLIC_KEY_TYPES):
        raise InvalidKeyFormat(f"Unsupported public key algorithm: {type(key).__name__}")
    return key


def _load_der_or_raw(data: bytes):
    try:
        key = serialization.load_der_public_key(data)
        if isinstance(key, PUBLIC_KEY_TYPES):
            return key
    except (ValueError, UnsupportedAlgorithm):
        pass

    try:
        if len(data) == 32:
            return ed25519.Ed25519PublicKey.from_public_bytes(data)
        if len(data) in (33, 65) and data[0] in (2, 3, 4):
            return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), data)
    except ValueError as exc:
        raise InvalidKeyFormat("Public key bytes are not a valid curve point.") from exc

    raise InvalidKeyFormat(
        "Public key is not a recognised encoding (PEM, DER SubjectPublicKeyInfo, "
        "raw Ed25519 or SEC1 P-256)."
    )


def _b64decode(text: str) -> bytes:
    compact = "".join(text.split())
    if not _BASE64_RE.match(compact):
        raise InvalidKeyFormat("Public key string is neither PEM nor base64.")
    standard = compact.rstrip("=").replace("-", "+").replace("_", "/")
    standard += "=" * (-len(standard) % 4)
    try:
        return base64.b64decode(standard, validate=True)
    except binascii.Error as exc:
        raise InvalidKeyFormat("Public key base64 could not be decoded.") from exc


# ── Hashing ───────────────────────────────────────────────────────────────────
def hash_sha256(*parts: bytes) -> str:
    """SHA-256 over the concatenated parts, hex encoded."""
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part)
    return digest.hexdigest()


# ── Detached JWS (credential proofs) ──────────────────────────────────────────
def sign_detached(payload: bytes, private_key_pem: str, key_id: str) -> str:
    """
    ES256-sign ``payload`` and return a detached compact JWS ("header..signature").
    The payload itself travels in the credential, not in the token.
    """
    try:
        token = jws.sign(
            payload,
            private_key_pem,
            headers={"kid": key_id},
            algorithm=SIGNING_ALGORITHM,
        )
    except (JWSError, JWKError) as exc:
        logger.error(f"Signing failed for key {key_id}: {exc.__class__.__name__}")
        raise CryptoFailure("Credential signing failed.") from exc
    header, _, signature = token.split(".")
    return f"{header}..{signature}"


def verify_detached(token: str, payload: bytes, public_key: PublicKeyInput) -> bool:
    """
    Verify a detached ES256 JWS against ``payload``.
    Raises ValueError if the token is not a detached compact JWS at all.
    """
    parts = token.split(".") if isinstance(token, str) else []
    if len(parts) != 3 or parts[1] != "" or not parts[0] or not parts[2]:
        raise ValueError("Not a detached compact JWS.")
    attached = f"{parts[0]}.{base64url_encode(payload).decode()}.{parts[2]}"
    try:
        jws.verify(attached, public_key_pem(public_key), algorithms=[SIGNING_ALGORITHM])
    except (JWSError, JWKError):
        return False
    return True


def jws_key_id(token: str) -> Optional[str]:
    try:
        return jws.get_unverified_header(token).get("kid")
    except JWSError:
        return None


class CryptoEngine:
    """
    Singleton crypto engine — initialized once in main.py,
    then used across all modules via:  from core.crypto import crypto_engine
    """

    def __init__(self):
        self._issuer_private_key: Optional[ec.EllipticCurvePrivateKey] = None
        self._ready = False

    def initialize(self):
        """Called once on app startup (main.py lifespan)."""
        if settings.ISSUER_PRIVATE_KEY:
            self._issuer_private_key = load_issuer_private_key(settings.ISSUER_PRIVATE_KEY)
            logger.info("Issuer signing key loaded from configuration.")
        elif settings.ENVIRONMENT == "production":
            raise ValueError(
                "ISSUER_PRIVATE_KEY is not set in .env! "
                "Generate one with: openssl ecparam -name prime256v1 -genkey -noout "
                "| openssl pkcs8 -topk8 -nocrypt"
            )
        else:
            self._issuer_private_key = ec.generate_private_key(ec.SECP256R1())
            logger.warning("ISSUER_PRIVATE_KEY not set — using an ephemeral issuer key (development only).")
        self._ready = True
        logger.info("Crypto engine initialized.")

    def is_ready(self) -> str:
        return "ok" if self._ready else "not initialized"

    @property
    def issuer_private_key(self) -> ec.EllipticCurvePrivateKey:
        if not self._ready:
            raise RuntimeError("CryptoEngine not initialized. Call initialize() first.")
        return self._issuer_private_key

    # ── JWT Tokens ─────────────────────────────────────────────────────────
    def create_access_token(self, subject: str, extra_data: dict = None) -> str:
        """
        Create a signed JWT session token.
        subject = the holder's DID.
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": subject,
            "exp": now + timedelta(minutes=settings.JWT_EXPIRY_MINUTES),
            "iat": now,
        }
        if extra_data:
            payload.update(extra_data)
        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict:
        """Verify and decode a JWT. Raises JWTError if invalid/expired."""
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def load_issuer_private_key(pem: str) -> ec.EllipticCurvePrivateKey:
    try:
        key = serialization.load_pem_private_key(pem.encode(), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise InvalidKeyFormat("ISSUER_PRIVATE_KEY is not a valid unencrypted PEM private key.") from exc
    if not isinstance(key, ec.EllipticCurvePrivateKey) or key.curve.name != "secp256r1":
        raise InvalidKeyFormat("Issuer key must be an ECDSA P-256 private key.")
    return key


# Singleton instance: import this everywhere
crypto_engine = CryptoEngine()

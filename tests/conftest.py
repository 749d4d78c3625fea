"""Shared fixtures for the Bharat-ID test suite."""

import os

# Settings are read at import time; pin them before anything imports config.
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("REGISTRY_BACKEND", "simulation")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ISSUER_PRIVATE_KEY", "")

import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient

from core.credentials import IssuerKey
from core.identity import derive_did


# ---------------------------------------------------------------------------
# Keys and DIDs
# ---------------------------------------------------------------------------


@pytest.fixture
def p256_private_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def issuer_key(p256_private_key) -> IssuerKey:
    return IssuerKey.from_private_key(p256_private_key, "test-issuer")


@pytest.fixture
def other_issuer_key() -> IssuerKey:
    return IssuerKey.from_private_key(ec.generate_private_key(ec.SECP256R1()), "other-issuer")


@pytest.fixture
def subject_did() -> str:
    holder_key = ec.generate_private_key(ec.SECP256R1()).public_key()
    return derive_did(holder_key, "holder-device")


@pytest.fixture
def sample_claims() -> dict:
    return {"name": "Asha Verma", "ageOver18": True, "state": "Karnataka", "pincode": 560001}


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def client():
    """App with lifespan: fresh simulated registry and a published issuer DID."""
    from main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def issuer_did(client) -> str:
    from modules.credentials import current_issuer

    return current_issuer().did


# ---------------------------------------------------------------------------
# Bearer tokens
# ---------------------------------------------------------------------------


def _bearer(subject: str, scope: str) -> dict:
    from core.crypto import crypto_engine

    return {"Authorization": f"Bearer {crypto_engine.create_access_token(subject, {'scope': scope})}"}


@pytest.fixture
def issuer_headers(issuer_did) -> dict:
    return _bearer(issuer_did, "issuer")


@pytest.fixture
def admin_headers() -> dict:
    return _bearer("registry-admin", "admin")


@pytest.fixture
def holder_headers(subject_did) -> dict:
    return _bearer(subject_did, "holder")

"""End-to-end tests for the HTTP API (main.py + api/routes_*.py).

Tests cover:
1. Enrollment   - POST /enrollment/options, POST /enrollment/verify
2. Auth         - POST /auth/token, bearer scopes on protected routes
3. DID registry - GET/POST /did, PUT /did/{did}/deactivate
4. Credentials  - issue, verify, revoke, status
5. Verification - POST /verify/presentation, GET /verify/status/{did}
6. Consent      - POST /consent/share
7. Status       - GET /, GET /health-check
"""

import copy
import logging
from datetime import timedelta
from types import SimpleNamespace

import cbor2
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from webauthn.helpers.exceptions import InvalidRegistrationResponse

import modules.enrollment as enrollment_module
from config import settings
from core.challenges import challenge_store
from core.credentials import issue_credential
from core.crypto import crypto_engine
from core.identity import compute_device_id, derive_did, derive_pairwise_did, is_valid_did
from core.registry import registry
from modules.credentials import register_issuer_did

from tests.vectors import SAMPLE_DID_DEVICE_100, SAMPLE_DID_DEVICE_101, SAMPLE_PUBLIC_KEY_B64

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def cose_ec2_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    """COSE_Key (EC2, ES256, P-256) as an authenticator would return it."""
    numbers = public_key.public_numbers()
    return cbor2.dumps({
        1: 2,
        3: -7,
        -1: 1,
        -2: numbers.x.to_bytes(32, "big"),
        -3: numbers.y.to_bytes(32, "big"),
    })


@pytest.fixture
def authenticator(monkeypatch):
    """
    Stand-in for the browser + authenticator: a fresh P-256 key and a stubbed
    attestation check that records the arguments it was called with.
    """
    key = ec.generate_private_key(ec.SECP256R1()).public_key()
    state = SimpleNamespace(public_key=key, credential_id=b"credential-0001", calls=[])

    def fake_verify(**kwargs):
        state.calls.append(kwargs)
        return SimpleNamespace(credential_id=state.credential_id, credential_public_key=cose_ec2_key(key))

    monkeypatch.setattr(enrollment_module, "verify_registration_response", fake_verify)
    return state


def enroll(client) -> dict:
    options = client.post("/enrollment/options").json()
    response = client.post(
        "/enrollment/verify",
        json={"credential": {"id": "abc", "type": "public-key", "response": {}}, "userId": options["userId"]},
    )
    return {"options": options, "response": response}


def issue(client, headers, subject_did, claims=None, **extra):
    body = {"subjectDID": subject_did, "claims": claims or {"name": "Asha Verma", "ageOver18": True}, **extra}
    return client.post("/credentials/issue", json=body, headers=headers)


def token_headers(subject: str, scope: str) -> dict:
    return {"Authorization": f"Bearer {crypto_engine.create_access_token(subject, {'scope': scope})}"}


# ============================================================================
# Enrollment
# ============================================================================


class TestEnrollment:
    def test_options(self, client):
        body = client.post("/enrollment/options").json()
        options = body["options"]
        assert body["userId"]
        assert options["rp"]["id"] == "localhost"
        assert options["challenge"]
        assert options["authenticatorSelection"]["userVerification"] == "required"
        assert options["attestation"] == "none"

    def test_verify_mints_did(self, client, authenticator):
        result = enroll(client)
        response = result["response"]
        assert response.status_code == 201
        body = response.json()

        device_id = compute_device_id(authenticator.credential_id, "testclient", "testclient")
        assert body["did"] == derive_did(authenticator.public_key, device_id)
        assert body["stage"] == "DIDDerived"
        claims = crypto_engine.verify_token(body["accessToken"])
        assert claims["sub"] == body["did"]
        assert claims["scope"] == "holder"

        call = authenticator.calls[0]
        assert call["require_user_verification"] is True
        assert call["expected_rp_id"] == "localhost"

    def test_enrolled_did_resolves(self, client, authenticator):
        did = enroll(client)["response"].json()["did"]
        doc = client.get(f"/did/{did}").json()
        assert doc["id"] == did
        assert doc["service"] == []

    def test_duplicate_device(self, client, authenticator):
        first = enroll(client)["response"].json()
        second = enroll(client)["response"]
        assert second.status_code == 409
        assert second.json()["code"] == "DuplicateEnrollment"
        assert second.json()["did"] == first["did"]

    def test_challenge_is_single_use(self, client, authenticator):
        options = client.post("/enrollment/options").json()
        body = {"credential": {"id": "abc", "response": {}}, "userId": options["userId"]}
        assert client.post("/enrollment/verify", json=body).status_code == 201
        again = client.post("/enrollment/verify", json=body)
        assert again.status_code == 400
        assert again.json()["code"] == "WebAuthnError"

    def test_unknown_session(self, client, authenticator):
        response = client.post("/enrollment/verify", json={"credential": {"response": {}}, "userId": "nope"})
        assert response.status_code == 400
        assert response.json()["code"] == "WebAuthnError"
        assert authenticator.calls == []

    def test_attestation_rejected(self, client, monkeypatch):
        def reject(**kwargs):
            raise InvalidRegistrationResponse("User verification is required but user was not verified")

        monkeypatch.setattr(enrollment_module, "verify_registration_response", reject)
        response = enroll(client)["response"]
        assert response.status_code == 400
        assert response.json()["code"] == "WebAuthnError"

    def test_audit_has_no_did(self, client, authenticator):
        did = enroll(client)["response"].json()["did"]
        enrollment_events = [e for e in registry.audit_events if e.actor_id == "enrollment"]
        assert len(enrollment_events) == 1
        assert did not in repr(enrollment_events)

    def test_too_many_pending(self, client, monkeypatch):
        monkeypatch.setattr(challenge_store, "_max_pending", len(challenge_store) + 1)
        assert client.post("/enrollment/options").status_code == 200
        response = client.post("/enrollment/options")
        assert response.status_code == 429
        assert response.json()["code"] == "TooManyPendingEnrollments"


# ============================================================================
# Auth
# ============================================================================


class TestServiceTokens:
    def test_issuer_key_exchange(self, client, issuer_did, subject_did, monkeypatch):
        monkeypatch.setattr(settings, "ISSUER_API_KEY", "issuer-secret")
        response = client.post("/auth/token", json={"apiKey": "issuer-secret", "scope": "issuer"})
        assert response.status_code == 200
        body = response.json()
        assert body["scope"] == "issuer"
        claims = crypto_engine.verify_token(body["accessToken"])
        assert claims["sub"] == issuer_did
        assert claims["scope"] == "issuer"

        headers = {"Authorization": f"Bearer {body['accessToken']}"}
        assert issue(client, headers, subject_did).status_code == 201

    def test_admin_key_exchange(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "admin-secret")
        response = client.post("/auth/token", json={"apiKey": "admin-secret", "scope": "admin"})
        assert response.status_code == 200
        assert crypto_engine.verify_token(response.json()["accessToken"])["scope"] == "admin"

    def test_wrong_key(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ISSUER_API_KEY", "issuer-secret")
        response = client.post("/auth/token", json={"apiKey": "guess", "scope": "issuer"})
        assert response.status_code == 401
        assert response.json()["code"] == "Unauthorized"

    def test_unset_key_refuses_scope(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "")
        response = client.post("/auth/token", json={"apiKey": "anything", "scope": "admin"})
        assert response.status_code == 401

    def test_admin_key_does_not_grant_issuer(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "admin-secret")
        monkeypatch.setattr(settings, "ISSUER_API_KEY", "issuer-secret")
        response = client.post("/auth/token", json={"apiKey": "admin-secret", "scope": "issuer"})
        assert response.status_code == 401

    def test_holder_scope_not_exchangeable(self, client):
        response = client.post("/auth/token", json={"apiKey": "anything", "scope": "holder"})
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidInput"

    def test_token_exchange_is_audited(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "admin-secret")
        client.post("/auth/token", json={"apiKey": "admin-secret", "scope": "admin"})
        events = [e for e in registry.audit_events if e.event == "SERVICE_TOKEN_ISSUED"]
        assert len(events) == 1
        assert "admin-secret" not in repr(registry.audit_events)


class TestProtectedRoutes:
    """Anonymous → 401, wrong scope → 403, on every issuer and admin route."""

    @pytest.fixture
    def calls(self, issuer_did, subject_did):
        return [
            ("POST", "/credentials/issue", {"subjectDID": subject_did, "claims": {"a": 1}}, "issuer"),
            ("POST", "/credentials/revoke", {"credentialId": "urn:uuid:x", "issuerDID": issuer_did}, "issuer"),
            ("POST", "/did", {"did": SAMPLE_DID_DEVICE_100, "publicKey": SAMPLE_PUBLIC_KEY_B64}, "admin"),
            ("PUT", f"/did/{issuer_did}/deactivate", None, "admin"),
        ]

    def test_anonymous_is_401(self, client, calls):
        for method, path, body, _ in calls:
            response = client.request(method, path, json=body)
            assert response.status_code == 401, path
            assert response.json()["code"] == "Unauthorized"

    def test_garbage_token_is_401(self, client, calls):
        for method, path, body, _ in calls:
            response = client.request(method, path, json=body, headers={"Authorization": "Bearer not.a.jwt"})
            assert response.status_code == 401, path

    def test_holder_token_is_403(self, client, calls, holder_headers):
        for method, path, body, _ in calls:
            response = client.request(method, path, json=body, headers=holder_headers)
            assert response.status_code == 403, path
            assert response.json()["code"] == "Forbidden"

    def test_swapped_service_scope_is_403(self, client, calls, issuer_did):
        for method, path, body, scope in calls:
            other = "admin" if scope == "issuer" else "issuer"
            response = client.request(method, path, json=body, headers=token_headers(issuer_did, other))
            assert response.status_code == 403, path

    def test_rejected_calls_change_nothing(self, client, calls, issuer_did):
        for method, path, body, _ in calls:
            client.request(method, path, json=body)
        assert client.get(f"/did/{issuer_did}").status_code == 200
        assert client.get(f"/did/{SAMPLE_DID_DEVICE_100}").status_code == 404
        assert client.get("/credentials/status/urn:uuid:x").json()["revoked"] is False

    def test_read_routes_stay_open(self, client, issuer_did):
        assert client.get(f"/did/{issuer_did}").status_code == 200
        assert client.get(f"/did/{issuer_did}/keys").status_code == 200
        assert client.get(f"/verify/status/{issuer_did}").status_code == 200
        assert client.post("/credentials/verify", json={"credential": {}}).status_code == 200


# ============================================================================
# DID registry
# ============================================================================


class TestDIDRoutes:
    def test_issuer_did_published_on_startup(self, client, issuer_did):
        doc = client.get(f"/did/{issuer_did}").json()
        assert doc["id"] == issuer_did
        assert doc["service"][0]["type"] == "CredentialIssuerService"

    def test_keys(self, client, issuer_did):
        body = client.get(f"/did/{issuer_did}/keys").json()
        assert body["verificationMethod"][0]["id"] == issuer_did + "#key-1"

    def test_not_found(self, client):
        response = client.get(f"/did/{SAMPLE_DID_DEVICE_101}")
        assert response.status_code == 404
        assert response.json()["code"] == "NotFound"

    def test_malformed(self, client):
        response = client.get("/did/did:bharat:1234")
        assert response.status_code == 400
        assert response.json()["code"] == "MalformedDID"

    def test_register_and_deactivate(self, client, admin_headers):
        body = {"did": SAMPLE_DID_DEVICE_100, "publicKey": SAMPLE_PUBLIC_KEY_B64}
        response = client.post("/did", json=body, headers=admin_headers)
        assert response.status_code == 201
        assert response.json()["document"]["id"] == SAMPLE_DID_DEVICE_100

        duplicate = client.post("/did", json=body, headers=admin_headers)
        assert duplicate.status_code == 409

        assert client.put(f"/did/{SAMPLE_DID_DEVICE_100}/deactivate", headers=admin_headers).status_code == 200
        gone = client.get(f"/did/{SAMPLE_DID_DEVICE_100}")
        assert gone.status_code == 410
        assert gone.json()["code"] == "DIDDeactivated"

    def test_register_bad_key(self, client, admin_headers):
        response = client.post("/did", json={"did": SAMPLE_DID_DEVICE_100, "publicKey": "nope"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidKeyFormat"

    def test_deactivate_unknown(self, client, admin_headers):
        assert client.put(f"/did/{SAMPLE_DID_DEVICE_101}/deactivate", headers=admin_headers).status_code == 404

    def test_restart_warns_about_deactivated_issuer(self, client, issuer_did, admin_headers, caplog):
        client.put(f"/did/{issuer_did}/deactivate", headers=admin_headers)
        with caplog.at_level(logging.WARNING, logger="bharatid.modules.credentials"):
            assert client.portal.call(register_issuer_did) == issuer_did
        assert "is deactivated" in caplog.text
        assert client.get(f"/did/{issuer_did}").status_code == 410


# ============================================================================
# Credentials
# ============================================================================


class TestCredentialRoutes:
    def test_issue_and_verify(self, client, issuer_did, issuer_headers, subject_did):
        response = issue(client, issuer_headers, subject_did, validityPeriod=30)
        assert response.status_code == 201
        body = response.json()
        assert body["stage"] == "CredentialIssued"
        assert body["credential"]["issuer"] == issuer_did

        result = client.post("/credentials/verify", json={"credential": body["credential"]}).json()
        assert result == {
            "valid": True,
            "reason": None,
            "credentialId": body["credentialId"],
            "stage": "Verified",
        }

    def test_tampered(self, client, issuer_headers, subject_did):
        credential = issue(client, issuer_headers, subject_did).json()["credential"]
        forged = copy.deepcopy(credential)
        forged["credentialSubject"]["ageOver18"] = False
        result = client.post("/credentials/verify", json={"credential": forged}).json()
        assert result["valid"] is False
        assert result["reason"] == "SignatureMismatch"
        assert result["stage"] == "Rejected"

    def test_malformed_is_200(self, client):
        response = client.post("/credentials/verify", json={"credential": {"foo": "bar"}})
        assert response.status_code == 200
        assert response.json()["reason"] == "MalformedCredential"

    def test_unknown_issuer(self, client, other_issuer_key, subject_did):
        foreign = issue_credential(other_issuer_key, subject_did, {"name": "x"}, timedelta(days=1))
        result = client.post("/credentials/verify", json={"credential": foreign.to_json()}).json()
        assert result["reason"] == "UnknownIssuer"

    def test_deactivated_issuer(self, client, issuer_did, issuer_headers, admin_headers, subject_did):
        credential = issue(client, issuer_headers, subject_did).json()["credential"]
        client.put(f"/did/{issuer_did}/deactivate", headers=admin_headers)
        result = client.post("/credentials/verify", json={"credential": credential}).json()
        assert result["reason"] == "IssuerDeactivated"

    def test_revocation(self, client, issuer_did, issuer_headers, subject_did):
        body = issue(client, issuer_headers, subject_did).json()
        credential_id = body["credentialId"]

        assert client.get(f"/credentials/status/{credential_id}").json()["revoked"] is False

        revoked = client.post(
            "/credentials/revoke",
            json={"credentialId": credential_id, "issuerDID": issuer_did, "reason": "Lost device"},
            headers=issuer_headers,
        )
        assert revoked.status_code == 200
        assert revoked.json()["status"] == "revoked"

        status = client.get(f"/credentials/status/{credential_id}").json()
        assert status["revoked"] is True
        assert status["reason"] == "Lost device"

        result = client.post("/credentials/verify", json={"credential": body["credential"]}).json()
        assert result["reason"] == "Revoked"

        again = client.post(
            "/credentials/revoke",
            json={"credentialId": credential_id, "issuerDID": issuer_did},
            headers=issuer_headers,
        )
        assert again.status_code == 409

    def test_only_issuer_can_revoke(self, client, issuer_headers, subject_did):
        credential_id = issue(client, issuer_headers, subject_did).json()["credentialId"]
        response = client.post(
            "/credentials/revoke",
            json={"credentialId": credential_id, "issuerDID": SAMPLE_DID_DEVICE_100},
            headers=issuer_headers,
        )
        assert response.status_code == 403

    def test_invalid_subject(self, client, issuer_headers):
        response = issue(client, issuer_headers, "did:bharat:nope")
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidSubject"

    def test_invalid_claims(self, client, issuer_headers, subject_did):
        response = issue(client, issuer_headers, subject_did, claims={"address": {"city": "Pune"}})
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidClaims"

    def test_invalid_validity(self, client, issuer_headers, subject_did):
        assert issue(client, issuer_headers, subject_did, validityPeriod=0).status_code == 400

    def test_missing_fields(self, client, issuer_headers):
        response = client.post("/credentials/issue", json={"claims": {"a": 1}}, headers=issuer_headers)
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidInput"

    def test_audit_holds_no_claims(self, client, issuer_headers, subject_did):
        issue(client, issuer_headers, subject_did, claims={"name": "Very Private Name"})
        assert registry.audit_events
        assert "Very Private Name" not in repr(registry.audit_events)


# ============================================================================
# Verification
# ============================================================================


class TestPresentationRoutes:
    def test_all_valid(self, client, issuer_did, issuer_headers, subject_did):
        first = issue(client, issuer_headers, subject_did).json()
        second = issue(client, issuer_headers, subject_did, claims={"state": "Kerala"}).json()
        presentation = {"verifiableCredential": [first["credential"], second["credential"]]}

        response = client.post("/verify/presentation", json={"presentation": presentation})
        assert response.status_code == 200
        body = response.json()
        assert body["verified"] is True
        assert body["totalCredentials"] == 2
        assert [r["credentialId"] for r in body["results"]] == [first["credentialId"], second["credentialId"]]
        assert all(r["issuer"] == issuer_did for r in body["results"])

    def test_single_credential_object(self, client, issuer_headers, subject_did):
        credential = issue(client, issuer_headers, subject_did).json()["credential"]
        body = client.post(
            "/verify/presentation", json={"presentation": {"verifiableCredential": credential}},
        ).json()
        assert body["verified"] is True
        assert body["totalCredentials"] == 1

    def test_one_bad_credential_fails_presentation(self, client, issuer_headers, subject_did):
        good = issue(client, issuer_headers, subject_did).json()["credential"]
        forged = copy.deepcopy(good)
        forged["credentialSubject"]["name"] = "Someone Else"
        body = client.post(
            "/verify/presentation",
            json={"presentation": {"verifiableCredential": [good, forged, {"foo": "bar"}]}},
        ).json()
        assert body["verified"] is False
        assert [r["valid"] for r in body["results"]] == [True, False, False]
        assert [r["reason"] for r in body["results"]] == [None, "SignatureMismatch", "MalformedCredential"]

    def test_revoked_credential_in_presentation(self, client, issuer_did, issuer_headers, subject_did):
        body = issue(client, issuer_headers, subject_did).json()
        client.post(
            "/credentials/revoke",
            json={"credentialId": body["credentialId"], "issuerDID": issuer_did},
            headers=issuer_headers,
        )
        result = client.post(
            "/verify/presentation", json={"presentation": {"verifiableCredential": [body["credential"]]}},
        ).json()
        assert result["verified"] is False
        assert result["results"][0]["reason"] == "Revoked"

    def test_missing_presentation(self, client):
        response = client.post("/verify/presentation", json={})
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidInput"

    def test_empty_presentation(self, client):
        response = client.post("/verify/presentation", json={"presentation": {"verifiableCredential": []}})
        assert response.status_code == 400

    def test_too_many_credentials(self, client, monkeypatch):
        monkeypatch.setattr(settings, "MAX_PRESENTATION_CREDENTIALS", 2)
        presentation = {"verifiableCredential": [{}, {}, {}]}
        assert client.post("/verify/presentation", json={"presentation": presentation}).status_code == 400


class TestDIDStatusRoute:
    def test_active(self, client, issuer_did):
        body = client.get(f"/verify/status/{issuer_did}").json()
        assert body["did"] == issuer_did
        assert body["active"] is True
        assert body["created"].endswith("Z")

    def test_deactivated_still_answers(self, client, issuer_did, admin_headers):
        client.put(f"/did/{issuer_did}/deactivate", headers=admin_headers)
        response = client.get(f"/verify/status/{issuer_did}")
        assert response.status_code == 200
        assert response.json()["active"] is False

    def test_unknown(self, client):
        response = client.get(f"/verify/status/{SAMPLE_DID_DEVICE_101}")
        assert response.status_code == 404
        assert response.json()["code"] == "NotFound"

    def test_malformed(self, client):
        assert client.get("/verify/status/did:bharat:XYZ").status_code == 400


# ============================================================================
# Consent
# ============================================================================


class TestConsentShare:
    def _share(self, client, headers, credential, **overrides):
        body = {
            "credential": credential,
            "relyingPartyId": "bank.example.in",
            "requestedFields": ["name", "ageOver18"],
            "approvedFields": ["ageOver18"],
            "durationDays": 7,
            **overrides,
        }
        return client.post("/consent/share", json=body, headers=headers or {})

    def test_share(self, client, issuer_headers, holder_headers, subject_did):
        credential = issue(client, issuer_headers, subject_did).json()["credential"]

        response = self._share(client, holder_headers, credential)
        assert response.status_code == 200
        body = response.json()

        pairwise = derive_pairwise_did(subject_did, "bank.example.in")
        assert body["grant"]["pairwise_did"] == pairwise
        assert body["grant"]["fields"] == ["ageOver18"]
        shared = body["credential"]
        assert shared["credentialSubject"] == {"id": pairwise, "ageOver18": True}
        assert subject_did not in str(shared)

        result = client.post("/credentials/verify", json={"credential": shared}).json()
        assert result["valid"] is True

    def test_requires_token(self, client, issuer_headers, subject_did):
        credential = issue(client, issuer_headers, subject_did).json()["credential"]
        response = self._share(client, None, credential)
        assert response.status_code == 401
        assert response.json()["code"] == "Unauthorized"

    def test_bad_token(self, client, issuer_headers, subject_did):
        credential = issue(client, issuer_headers, subject_did).json()["credential"]
        assert self._share(client, {"Authorization": "Bearer not.a.jwt"}, credential).status_code == 401

    def test_unscoped_token(self, client, issuer_headers, subject_did):
        credential = issue(client, issuer_headers, subject_did).json()["credential"]
        headers = {"Authorization": f"Bearer {crypto_engine.create_access_token(subject_did)}"}
        assert self._share(client, headers, credential).status_code == 403

    def test_other_holders_credential(self, client, issuer_headers, subject_did):
        credential = issue(client, issuer_headers, subject_did).json()["credential"]
        headers = token_headers(SAMPLE_DID_DEVICE_100, "holder")
        assert self._share(client, headers, credential).status_code == 403

    def test_revoked_credential_cannot_be_shared(self, client, issuer_did, issuer_headers, holder_headers, subject_did):
        body = issue(client, issuer_headers, subject_did).json()
        client.post(
            "/credentials/revoke",
            json={"credentialId": body["credentialId"], "issuerDID": issuer_did},
            headers=issuer_headers,
        )
        response = self._share(client, holder_headers, body["credential"])
        assert response.status_code == 400
        assert response.json()["reason"] == "Revoked"

    def test_unrequested_field(self, client, issuer_headers, holder_headers, subject_did):
        credential = issue(client, issuer_headers, subject_did).json()["credential"]
        response = self._share(client, holder_headers, credential, approvedFields=["pincode"])
        assert response.status_code == 400


# ============================================================================
# Status
# ============================================================================


class TestStatus:
    def test_root(self, client):
        body = client.get("/").json()
        assert body["status"] == "operational"
        assert body["registry"] == "simulation"

    def test_health_check(self, client, issuer_did):
        body = client.get("/health-check").json()
        assert body["crypto"] == "ok"
        assert "1 DIDs" in body["registry"]
        assert is_valid_did(issuer_did)

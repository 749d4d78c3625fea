"""
core/resolver.py — DID Resolver
=================================
DID → W3C DID Document, regenerated on demand from the registry record.

Order of work for every call:
    1. grammar check (cheap, no I/O)  → MalformedDID
    2. registry lookup with timeout   → RegistryUnavailable / NotFound
    3. deactivation check             → DIDDeactivated
"""

import asyncio
import logging
from typing import Optional

from config import settings
from core.errors import DIDDeactivated, NotFound, RegistryUnavailable
from core.crypto import verification_method_type
from core.identity import key_id_for, short_did, validate_did
from core.registry import DIDRecord, registry

logger = logging.getLogger("bharatid.resolver")

DID_CONTEXT = ["https://www.w3.org/ns/did/v1"]
DOCUMENT_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def build_did_document(record: DIDRecord) -> dict:
    """W3C DID Document for a registry record. Contains no personal data."""
    did = record.did
    key_id = key_id_for(did)
    return {
        "@context": list(DID_CONTEXT),
        "id": did,
        "controller": did,
        "verificationMethod": [_verification_method(record)],
        "authentication": [key_id],
        "assertionMethod": [key_id],
        "service": [
            {"id": f"{did}#{s.id}", "type": s.type, "serviceEndpoint": s.service_endpoint}
            for s in record.services
        ],
        "created": record.created_at.strftime(DOCUMENT_TIMESTAMP_FORMAT),
        "updated": record.updated_at.strftime(DOCUMENT_TIMESTAMP_FORMAT),
        "deactivated": record.deactivated,
    }


def _verification_method(record: DIDRecord) -> dict:
    return {
        "id": key_id_for(record.did),
        "type": verification_method_type(record.public_key_pem),
        "controller": record.did,
        "publicKeyPem": record.public_key_pem,
    }


class DIDResolver:
    """Stateless resolver over a registry backend; safe for concurrent use."""

    def __init__(self, backend=None, timeout: Optional[float] = None):
        self._backend = backend
        self._timeout = timeout

    @property
    def backend(self):
        return self._backend if self._backend is not None else registry

    async def resolve(self, did: str) -> dict:
        """Return the DID Document for ``did``."""
        return build_did_document(await self._active_record(did))

    async def resolve_keys(self, did: str) -> dict:
        """Verification methods only (fast path for verifiers)."""
        record = await self._active_record(did)
        return {"did": record.did, "verificationMethod": [_verification_method(record)]}

    async def public_key_pem(self, did: str) -> str:
        return (await self._active_record(did)).public_key_pem

    async def status(self, did: str) -> dict:
        """Registry status of ``did``. Unlike resolve, answers for deactivated DIDs too."""
        record = await self._existing_record(did)
        return {
            "did": record.did,
            "active": not record.deactivated,
            "created": record.created_at.strftime(DOCUMENT_TIMESTAMP_FORMAT),
            "updated": record.updated_at.strftime(DOCUMENT_TIMESTAMP_FORMAT),
        }

    async def _existing_record(self, did: str) -> DIDRecord:
        validate_did(did)
        record = await self._lookup(did)
        if record is None:
            raise NotFound(f"DID {short_did(did)} does not exist in registry.")
        return record

    async def _active_record(self, did: str) -> DIDRecord:
        record = await self._existing_record(did)
        if record.deactivated:
            raise DIDDeactivated(f"DID {short_did(did)} has been deactivated.")
        return record

    async def _lookup(self, did: str) -> Optional[DIDRecord]:
        timeout = self._timeout if self._timeout is not None else settings.REGISTRY_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(self.backend.get_record(did), timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.error(f"Registry lookup timed out after {timeout}s for {short_did(did)}")
            raise RegistryUnavailable("DID registry did not answer in time; retry later.") from exc


# Singleton: import this everywhere:  from core.resolver import resolver
resolver = DIDResolver()

"""
core/registry.py — DID Registry Backend
=========================================
Storage behind the resolver and the revocation list. Two backends:
  1. "simulation" — in-memory, no external dependencies (default)
  2. "database"   — SQLAlchemy async (SQLite via aiosqlite, PostgreSQL via asyncpg)

Set REGISTRY_BACKEND in .env to switch.
All modules call: from core.registry import registry

The registry only ever holds public key material, service endpoints,
revoked credential ids and non-identifying audit metadata.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from config import settings
from core.crypto import PublicKeyInput, public_key_pem
from core.errors import Conflict, InvalidInput, NotFound
from core.identity import short_did, validate_did
from db.models import AuditLog, CredentialRevocation, DIDDocumentRecord
from db.session import AsyncSessionLocal, engine, init_db

logger = logging.getLogger("bharatid.registry")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored by the database backend."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ── Records ───────────────────────────────────────────────────────────────────
class ServiceEndpoint(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str                                               # fragment, e.g. "issuer"
    type: str
    service_endpoint: str = Field(alias="serviceEndpoint")


class DIDRecord(BaseModel):
    did: str
    public_key_pem: str
    services: List[ServiceEndpoint] = Field(default_factory=list)
    deactivated: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RevocationEntry(BaseModel):
    credential_id: str
    issuer_did: str
    reason: Optional[str] = None
    revoked_at: datetime = Field(default_factory=utcnow)


class AuditEvent(BaseModel):
    event: str
    actor_id: str
    credential_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


def new_record(did: str, public_key: PublicKeyInput, services: Optional[List[ServiceEndpoint]] = None) -> DIDRecord:
    """Validated registry record: well-formed DID, parseable key, unique service ids."""
    validate_did(did)
    services = list(services or [])
    ids = [s.id for s in services]
    if len(ids) != len(set(ids)):
        raise InvalidInput("Service endpoint ids must be unique.")
    return DIDRecord(did=did, public_key_pem=public_key_pem(public_key), services=services)


# ── Simulated registry (default: works with zero setup) ──────────────────────
class SimulatedRegistry:
    """
    In-memory registry. Data resets on connect() and when the server restarts.
    """

    def __init__(self):
        self.records: Dict[str, DIDRecord] = {}
        self.revocations: Dict[str, RevocationEntry] = {}
        self.audit_events: List[AuditEvent] = []

    async def connect(self):
        self.records.clear()
        self.revocations.clear()
        self.audit_events.clear()
        logger.info("SimulatedRegistry: ready (in-memory mode)")

    async def disconnect(self):
        logger.info("SimulatedRegistry: disconnected")

    async def ping(self) -> str:
        return f"ok — simulated registry, {len(self.records)} DIDs"

    async def get_record(self, did: str) -> Optional[DIDRecord]:
        return self.records.get(did)

    async def add_record(self, record: DIDRecord) -> DIDRecord:
        if record.did in self.records:
            raise Conflict(f"DID {short_did(record.did)} is already registered.", did=record.did)
        self.records[record.did] = record
        return record

    async def deactivate(self, did: str) -> DIDRecord:
        record = self.records.get(did)
        if record is None:
            raise NotFound(f"DID {short_did(did)} does not exist in registry.")
        record = record.model_copy(update={"deactivated": True, "updated_at": utcnow()})
        self.records[did] = record
        return record

    async def add_revocation(self, entry: RevocationEntry) -> RevocationEntry:
        if entry.credential_id in self.revocations:
            raise Conflict("Credential already revoked.", credential_id=entry.credential_id)
        self.revocations[entry.credential_id] = entry
        return entry

    async def get_revocation(self, credential_id: str) -> Optional[RevocationEntry]:
        return self.revocations.get(credential_id)

    async def record_audit(self, event: AuditEvent):
        self.audit_events.append(event)


# ── Database registry ─────────────────────────────────────────────────────────
class DatabaseRegistry:
    """
    SQLAlchemy-backed registry. Requires DATABASE_URL in .env
    (defaults to a local SQLite file).
    """

    def __init__(self, session_factory=AsyncSessionLocal, bind=engine):
        self._session_factory = session_factory
        self._engine = bind

    async def connect(self):
        logger.info(f"DatabaseRegistry: connecting to {settings.redacted_database_url}")
        await init_db(self._engine)

    async def disconnect(self):
        await self._engine.dispose()
        logger.info("DatabaseRegistry: disconnected")

    async def ping(self) -> str:
        async with self._session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(DIDDocumentRecord))
        return f"ok — database registry, {count} DIDs"

    async def get_record(self, did: str) -> Optional[DIDRecord]:
        async with self._session_factory() as session:
            row = await session.get(DIDDocumentRecord, did)
        return _record_from_row(row) if row else None

    async def add_record(self, record: DIDRecord) -> DIDRecord:
        async with self._session_factory() as session:
            if await session.get(DIDDocumentRecord, record.did):
                raise Conflict(f"DID {short_did(record.did)} is already registered.", did=record.did)
            session.add(DIDDocumentRecord(
                did=record.did,
                public_key_pem=record.public_key_pem,
                services=[s.model_dump(by_alias=True) for s in record.services],
                deactivated=record.deactivated,
                created_at=record.created_at,
                updated_at=record.updated_at,
            ))
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise Conflict(f"DID {short_did(record.did)} is already registered.", did=record.did) from exc
        return record

    async def deactivate(self, did: str) -> DIDRecord:
        async with self._session_factory() as session:
            row = await session.get(DIDDocumentRecord, did)
            if row is None:
                raise NotFound(f"DID {short_did(did)} does not exist in registry.")
            row.deactivated = True
            row.updated_at = utcnow()
            await session.commit()
            return _record_from_row(row)

    async def add_revocation(self, entry: RevocationEntry) -> RevocationEntry:
        async with self._session_factory() as session:
            session.add(CredentialRevocation(
                credential_id=entry.credential_id,
                issuer_did=entry.issuer_did,
                reason=entry.reason,
                revoked_at=entry.revoked_at,
            ))
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise Conflict("Credential already revoked.", credential_id=entry.credential_id) from exc
        return entry

    async def get_revocation(self, credential_id: str) -> Optional[RevocationEntry]:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(CredentialRevocation).where(CredentialRevocation.credential_id == credential_id)
            )
        if row is None:
            return None
        return RevocationEntry(
            credential_id=row.credential_id,
            issuer_did=row.issuer_did,
            reason=row.reason,
            revoked_at=row.revoked_at,
        )

    async def record_audit(self, event: AuditEvent):
        async with self._session_factory() as session:
            session.add(AuditLog(
                event=event.event,
                actor_id=event.actor_id,
                credential_id=event.credential_id,
                timestamp=event.timestamp,
            ))
            await session.commit()


def _record_from_row(row: DIDDocumentRecord) -> DIDRecord:
    return DIDRecord(
        did=row.did,
        public_key_pem=row.public_key_pem,
        services=[ServiceEndpoint.model_validate(s) for s in (row.services or [])],
        deactivated=row.deactivated,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


async def write_audit(event: str, actor_id: str, credential_id: Optional[str] = None):
    """Append a non-identifying audit event to the active registry."""
    await registry.record_audit(AuditEvent(event=event, actor_id=actor_id, credential_id=credential_id))


# ── Factory: picks the right backend from .env ───────────────────────────────
def _create_registry():
    backend = settings.REGISTRY_BACKEND.lower()
    if backend == "database":
        logger.info("Using database registry backend")
        return DatabaseRegistry()
    logger.info("Using simulated registry backend (development mode)")
    return SimulatedRegistry()


# Singleton: import this everywhere:  from core.registry import registry
registry = _create_registry()

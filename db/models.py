"""
db/models.py — Database Table Definitions
==========================================
Each class = one table.
Nothing here holds personal attributes: the registry keeps public key
material and service endpoints, the revocation list keeps credential ids,
and the audit log keeps non-identifying metadata only.
"""

import uuid
from datetime import datetime
from sqlalchemy import String, DateTime, Boolean, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column
from db.session import Base


def new_uuid():
    return str(uuid.uuid4())


# ── 1. DID Registry ───────────────────────────────────────────────────────────
class DIDDocumentRecord(Base):
    __tablename__ = "did_documents"

    did: Mapped[str] = mapped_column(String(75), primary_key=True)              # did:bharat:<64 hex>
    public_key_pem: Mapped[str] = mapped_column(Text, nullable=False)
    services: Mapped[list] = mapped_column(JSON, default=list)                  # [{id, type, serviceEndpoint}]
    deactivated: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ── 2. Credential Revocations ─────────────────────────────────────────────────
class CredentialRevocation(Base):
    __tablename__ = "credential_revocations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    credential_id: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    issuer_did: Mapped[str] = mapped_column(String(75), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=True)
    revoked_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# ── 3. Audit Log ──────────────────────────────────────────────────────────────
class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    event: Mapped[str] = mapped_column(String(100))                # CREDENTIAL_ISSUED | DID_REGISTERED | ...
    actor_id: Mapped[str] = mapped_column(String(255))             # issuer DID / relying party id
    credential_id: Mapped[str] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

"""
core/consent.py — Consent Grants
==================================
A consent grant says: "this subject agrees to show these claim fields to
this relying party". Grants are ephemeral and held by the client; the server
never stores them.

Every grant is scoped to a pairwise DID, so two relying parties receiving
data about the same subject cannot correlate it.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from config import settings
from core.errors import InvalidInput
from core.identity import derive_pairwise_did

logger = logging.getLogger("bharatid.consent")


class ConsentGrant(BaseModel):
    model_config = ConfigDict(frozen=True)

    relying_party_id: str
    pairwise_did: str
    fields: List[str]
    granted_at: datetime
    expires_at: datetime

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) < self.expires_at


def create_consent_grant(
    subject_did: str,
    relying_party_id: str,
    requested_fields: Iterable[str],
    approved_fields: Iterable[str],
    duration_days: int = 30,
    now: Optional[datetime] = None,
) -> ConsentGrant:
    """
    Build a grant for the fields the subject approved.

    Approved fields must be a non-empty subset of what the relying party
    requested. Duration is capped at MAX_CONSENT_DURATION_DAYS.
    """
    requested = list(dict.fromkeys(requested_fields))
    approved = list(dict.fromkeys(approved_fields))
    if not approved:
        raise InvalidInput("At least one field must be approved for sharing.")
    not_requested = set(approved) - set(requested)
    if not_requested:
        raise InvalidInput(f"Approved fields were not requested: {sorted(not_requested)}")
    if duration_days < 1:
        raise InvalidInput("Consent duration must be at least one day.")

    duration = min(duration_days, settings.MAX_CONSENT_DURATION_DAYS)
    granted_at = (now or datetime.now(timezone.utc)).replace(microsecond=0)
    grant = ConsentGrant(
        relying_party_id=relying_party_id,
        pairwise_did=derive_pairwise_did(subject_did, relying_party_id),
        fields=approved,
        granted_at=granted_at,
        expires_at=granted_at + timedelta(days=duration),
    )
    logger.info(f"Consent grant built for {relying_party_id}: {len(approved)} field(s), {duration} day(s)")
    return grant


def disclose_claims(claims: Mapping[str, Any], grant: ConsentGrant) -> Dict[str, Any]:
    """
    Only the granted fields. A granted field the subject does not actually
    hold is an error rather than a silent omission.
    """
    missing = [f for f in grant.fields if f not in claims]
    if missing:
        raise InvalidInput(f"Credential does not contain the approved fields: {missing}")
    return {f: claims[f] for f in grant.fields}

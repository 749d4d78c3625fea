"""
core/lifecycle.py — Identity Lifecycle
========================================
    KeyGenerated → DIDDerived → CredentialIssued → Verified | Rejected

Rejected is terminal: the only way forward is a fresh KeyGenerated cycle
(new key, new DID). There is no in-place repair.
"""

from enum import Enum

from core.errors import InvalidTransition


class LifecycleStage(str, Enum):
    KEY_GENERATED = "KeyGenerated"
    DID_DERIVED = "DIDDerived"
    CREDENTIAL_ISSUED = "CredentialIssued"
    VERIFIED = "Verified"
    REJECTED = "Rejected"


TRANSITIONS = {
    LifecycleStage.KEY_GENERATED: {LifecycleStage.DID_DERIVED},
    LifecycleStage.DID_DERIVED: {LifecycleStage.CREDENTIAL_ISSUED},
    LifecycleStage.CREDENTIAL_ISSUED: {LifecycleStage.VERIFIED, LifecycleStage.REJECTED},
    LifecycleStage.VERIFIED: set(),
    LifecycleStage.REJECTED: set(),
}

TERMINAL_STAGES = {LifecycleStage.VERIFIED, LifecycleStage.REJECTED}


def advance(current: LifecycleStage, target: LifecycleStage) -> LifecycleStage:
    """Move to ``target`` or raise InvalidTransition."""
    if target not in TRANSITIONS[current]:
        hint = " Start a new KeyGenerated cycle." if current == LifecycleStage.REJECTED else ""
        raise InvalidTransition(f"Cannot move from {current.value} to {target.value}.{hint}")
    return target


def verification_outcome(valid: bool) -> LifecycleStage:
    """Terminal stage reached by a credential after verification."""
    return advance(
        LifecycleStage.CREDENTIAL_ISSUED,
        LifecycleStage.VERIFIED if valid else LifecycleStage.REJECTED,
    )


def is_terminal(stage: LifecycleStage) -> bool:
    return stage in TERMINAL_STAGES

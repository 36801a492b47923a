from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from uuid import uuid4

from certchain.core.errors import InvalidTransitionError


class CredentialStatus(StrEnum):
    ISSUED = "issued"
    REVOKED = "revoked"


def new_credential_id() -> str:
    return f"CERT-{uuid4().hex.upper()}"


@dataclass(frozen=True, slots=True)
class CredentialRecord:
    """The registry's canonical record of one issued credential.

    Created only by a completed issuance, mutated only by revocation,
    never deleted.  ``subject_name`` is the snapshot the fingerprint was
    computed from.
    """

    credential_id: str
    subject_id: str
    subject_name: str
    course: str
    fingerprint: str
    ledger_ref: str | None
    content_address: str
    issued_at: int
    status: CredentialStatus = CredentialStatus.ISSUED
    revoked_at: int | None = None

    def revoke(self, *, at: int) -> CredentialRecord:
        if self.status is not CredentialStatus.ISSUED:
            raise InvalidTransitionError(
                f"credential {self.credential_id}: {self.status} -> revoked not allowed"
            )
        return replace(self, status=CredentialStatus.REVOKED, revoked_at=at)


class OperationKind(StrEnum):
    ISSUE = "issue"
    REVOKE = "revoke"


class PendingStage(StrEnum):
    RESERVED = "reserved"  # ledger call may or may not have happened
    LEDGER_CONFIRMED = "ledger_confirmed"  # ledger is durable; registry is behind


@dataclass(frozen=True, slots=True)
class PendingOperation:
    """Idempotency journal entry, keyed by fingerprint.

    Lives from the moment an issue/revoke reserves its fingerprint until
    the registry reflects the ledger outcome.  Reconciliation re-drives
    every entry it finds.
    """

    fingerprint: str
    kind: OperationKind
    credential_id: str
    subject_id: str
    subject_name: str
    course: str
    created_at: int
    stage: PendingStage = PendingStage.RESERVED
    ledger_ref: str | None = None

    def confirmed(self, ledger_ref: str | None) -> PendingOperation:
        return replace(self, stage=PendingStage.LEDGER_CONFIRMED, ledger_ref=ledger_ref)

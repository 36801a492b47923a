"""Read-side operations: verify a credential, look up a subject's credentials.

Verify never trusts the registry alone.  An ISSUED record only counts as
valid when its fields still hash to the stored fingerprint and the
ledger agrees; a REVOKED record is answered locally
because revocation is monotonic and the ledger cannot un-revoke.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from certchain.core.errors import NotFoundError, ValidationError
from certchain.core.metrics import VERIFICATION_VERDICTS
from certchain.models.credential import CredentialRecord, CredentialStatus
from certchain.models.subject import Subject
from certchain.repos.registry import CredentialRegistry
from certchain.services.archive import ContentArchive
from certchain.services.fingerprint import recompute_fingerprint
from certchain.services.ledger import VerificationLedger

logger = logging.getLogger(__name__)


class VerdictReason(StrEnum):
    VALID = "valid"
    REVOKED = "revoked"
    LEDGER_MISMATCH = "ledger_mismatch"


@dataclass(frozen=True, slots=True)
class VerificationResult:
    credential_id: str
    valid: bool
    reason: VerdictReason
    subject_name: str
    course: str
    content_link: str | None = None


@dataclass(frozen=True, slots=True)
class SubjectCredentials:
    subject: Subject
    credentials: tuple[CredentialRecord, ...]


class VerificationService:
    def __init__(
        self,
        *,
        registry: CredentialRegistry,
        ledger: VerificationLedger,
        archive: ContentArchive,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._archive = archive

    async def verify(self, credential_id: str) -> VerificationResult:
        credential_id = (credential_id or "").strip()
        record = await self._registry.get_credential(credential_id) if credential_id else None
        if record is None:
            VERIFICATION_VERDICTS.labels(verdict="not_found").inc()
            raise NotFoundError(f"credential {credential_id} not found")

        if record.status is CredentialStatus.REVOKED:
            return self._verdict(record, VerdictReason.REVOKED)

        extra = {"credential_id": record.credential_id, "fingerprint": record.fingerprint}
        # The displayed name and course must be the ones the ledger committed to.
        recomputed = recompute_fingerprint(record)
        if recomputed != record.fingerprint:
            logger.error("Record fields no longer match its fingerprint", extra=extra)
            return self._verdict(record, VerdictReason.LEDGER_MISMATCH)

        if await self._ledger.is_valid(recomputed):
            return self._verdict(record, VerdictReason.VALID)

        logger.warning("Registry says issued but ledger disagrees", extra=extra)
        return self._verdict(record, VerdictReason.LEDGER_MISMATCH)

    def _verdict(
        self, record: CredentialRecord, reason: VerdictReason
    ) -> VerificationResult:
        VERIFICATION_VERDICTS.labels(verdict=reason.value).inc()
        valid = reason is VerdictReason.VALID
        return VerificationResult(
            credential_id=record.credential_id,
            valid=valid,
            reason=reason,
            subject_name=record.subject_name,
            course=record.course,
            content_link=self._archive.resolve(record.content_address) if valid else None,
        )

    async def lookup_by_subject(
        self, *, subject_id: str | None = None, contact: str | None = None
    ) -> SubjectCredentials:
        """Find a subject by id (preferred) or contact; return its live credentials."""
        subject_id = (subject_id or "").strip()
        contact = (contact or "").strip().lower()
        if not subject_id and not contact:
            raise ValidationError("subject_id or contact is required")

        if subject_id:
            subject = await self._registry.get_subject(subject_id)
        else:
            subject = await self._registry.get_subject_by_contact(contact)
        if subject is None:
            raise NotFoundError("subject not found")

        records = await self._registry.list_credentials_for_subject(subject.subject_id)
        issued = tuple(r for r in records if r.status is CredentialStatus.ISSUED)
        return SubjectCredentials(subject=subject, credentials=issued)

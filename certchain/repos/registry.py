"""CredentialRegistry: the one store whose updates we control directly.

The protocol methods fall into two groups:

- plain reads and administrative writes (subjects, enrollments,
  institutions);
- protocol steps used by the orchestrator and reconciler.  Each of
  these is a single atomic registry transaction: ``reserve_*`` is the
  compare-and-set that admits exactly one in-flight operation per
  fingerprint, ``complete_*`` writes the record and the enrollment
  together so a certified enrollment never exists without its record,
  or the other way round.

``complete_*`` are idempotent so reconciliation may re-run them.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from certchain.core.errors import (
    AlreadyCertifiedError,
    AlreadyEnrolledError,
    AlreadyInProgressError,
    AlreadyRevokedError,
    DuplicateInstitutionError,
    DuplicateSubjectError,
    EnrollmentRevokedError,
    NotFoundError,
)
from certchain.models.credential import (
    CredentialRecord,
    CredentialStatus,
    OperationKind,
    PendingOperation,
    PendingStage,
)
from certchain.models.institution import Institution
from certchain.models.subject import Enrollment, EnrollmentStatus, Subject


class CredentialRegistry(Protocol):
    # --- subjects & enrollments ---
    async def get_subject(self, subject_id: str) -> Subject | None: ...
    async def get_subject_by_contact(self, contact: str) -> Subject | None: ...
    async def list_subjects(self) -> list[Subject]: ...
    async def add_subject(self, subject: Subject) -> None: ...
    async def update_subject(
        self,
        subject_id: str,
        *,
        name: str | None = None,
        contact: str | None = None,
        clear_contact: bool = False,
    ) -> Subject | None: ...
    async def add_enrollment(self, subject_id: str, course: str) -> Subject: ...

    # --- credential records ---
    async def get_credential(self, credential_id: str) -> CredentialRecord | None: ...
    async def list_credentials_for_subject(
        self, subject_id: str
    ) -> list[CredentialRecord]: ...

    # --- protocol steps ---
    async def get_pending(self, fingerprint: str) -> PendingOperation | None: ...
    async def list_pending(self) -> list[PendingOperation]: ...
    async def reserve_issuance(self, op: PendingOperation) -> None: ...
    async def release_issuance(self, fingerprint: str) -> None: ...
    async def reserve_revocation(self, op: PendingOperation) -> None: ...
    async def release_revocation(self, fingerprint: str) -> None: ...
    async def confirm_pending(
        self, fingerprint: str, ledger_ref: str | None
    ) -> PendingOperation: ...
    async def complete_issuance(
        self, fingerprint: str, record: CredentialRecord
    ) -> CredentialRecord: ...
    async def complete_revocation(
        self, fingerprint: str, *, revoked_at: int
    ) -> CredentialRecord: ...

    # --- institutions ---
    async def add_institution(self, institution: Institution) -> None: ...
    async def get_institution(self, identity: str) -> Institution | None: ...
    async def list_institutions(self) -> list[Institution]: ...
    async def set_minter(self, identity: str) -> Institution | None: ...


class InMemoryCredentialRegistry:
    """Dict-backed registry for dev and tests.

    No method awaits anything, so each one runs to completion before any
    other coroutine is scheduled: that is what makes the reserve_* checks
    atomic here.  PgCredentialRegistry gets the same guarantee from
    conditional UPDATEs inside a transaction.
    """

    def __init__(self) -> None:
        self._subjects: dict[str, Subject] = {}
        self._by_contact: dict[str, str] = {}
        self._credentials: dict[str, CredentialRecord] = {}
        self._credentials_by_subject: dict[str, list[str]] = {}
        self._pending: dict[str, PendingOperation] = {}
        self._institutions: dict[str, Institution] = {}

    # --- subjects & enrollments --------------------------------------------

    async def get_subject(self, subject_id: str) -> Subject | None:
        return self._subjects.get(subject_id)

    async def get_subject_by_contact(self, contact: str) -> Subject | None:
        subject_id = self._by_contact.get(contact)
        return self._subjects.get(subject_id) if subject_id else None

    async def list_subjects(self) -> list[Subject]:
        return sorted(self._subjects.values(), key=lambda s: s.name)

    async def add_subject(self, subject: Subject) -> None:
        if subject.subject_id in self._subjects:
            raise DuplicateSubjectError(f"subject {subject.subject_id} already exists")
        if subject.contact and subject.contact in self._by_contact:
            raise DuplicateSubjectError(f"contact {subject.contact} already in use")
        self._subjects[subject.subject_id] = subject
        if subject.contact:
            self._by_contact[subject.contact] = subject.subject_id

    async def update_subject(
        self,
        subject_id: str,
        *,
        name: str | None = None,
        contact: str | None = None,
        clear_contact: bool = False,
    ) -> Subject | None:
        s = self._subjects.get(subject_id)
        if s is None:
            return None

        if clear_contact:
            if s.contact:
                self._by_contact.pop(s.contact, None)
            s = replace(s, contact=None)
        elif contact is not None and contact != s.contact:
            owner = self._by_contact.get(contact)
            if owner is not None and owner != subject_id:
                raise DuplicateSubjectError(f"contact {contact} already in use")
            if s.contact:
                self._by_contact.pop(s.contact, None)
            self._by_contact[contact] = subject_id

        updated = replace(
            s,
            name=name if name is not None else s.name,
            contact=contact if contact is not None else s.contact,
        )
        self._subjects[subject_id] = updated
        return updated

    async def add_enrollment(self, subject_id: str, course: str) -> Subject:
        s = self._subjects.get(subject_id)
        if s is None:
            raise NotFoundError(f"subject {subject_id} not found")
        if s.enrollment(course) is not None:
            raise AlreadyEnrolledError(f"subject {subject_id} already enrolled in {course}")
        updated = s.with_enrollment(Enrollment(subject_id=subject_id, course=course))
        self._subjects[subject_id] = updated
        return updated

    # --- credential records ------------------------------------------------

    async def get_credential(self, credential_id: str) -> CredentialRecord | None:
        return self._credentials.get(credential_id)

    async def list_credentials_for_subject(
        self, subject_id: str
    ) -> list[CredentialRecord]:
        ids = self._credentials_by_subject.get(subject_id, [])
        return [self._credentials[i] for i in ids]

    # --- protocol steps ----------------------------------------------------

    async def get_pending(self, fingerprint: str) -> PendingOperation | None:
        return self._pending.get(fingerprint)

    async def list_pending(self) -> list[PendingOperation]:
        return sorted(self._pending.values(), key=lambda op: op.created_at)

    def _enrollment_or_raise(self, subject_id: str, course: str) -> Enrollment:
        s = self._subjects.get(subject_id)
        if s is None:
            raise NotFoundError(f"subject {subject_id} not found")
        e = s.enrollment(course)
        if e is None:
            raise NotFoundError(f"subject {subject_id} is not enrolled in {course}")
        return e

    def _put_enrollment(self, enrollment: Enrollment) -> None:
        s = self._subjects[enrollment.subject_id]
        self._subjects[s.subject_id] = s.with_enrollment(enrollment)

    async def reserve_issuance(self, op: PendingOperation) -> None:
        e = self._enrollment_or_raise(op.subject_id, op.course)
        ensure_enrolled(e)
        if op.fingerprint in self._pending:
            raise AlreadyInProgressError(f"fingerprint {op.fingerprint} is in flight")
        self._put_enrollment(e.transition(EnrollmentStatus.ISSUING))
        self._pending[op.fingerprint] = op

    async def release_issuance(self, fingerprint: str) -> None:
        op = self._pending.get(fingerprint)
        if op is None or op.stage is not PendingStage.RESERVED:
            return
        e = self._enrollment_or_raise(op.subject_id, op.course)
        if e.status is EnrollmentStatus.ISSUING:
            self._put_enrollment(e.transition(EnrollmentStatus.ENROLLED))
        del self._pending[fingerprint]

    async def reserve_revocation(self, op: PendingOperation) -> None:
        record = self._credentials.get(op.credential_id)
        if record is None:
            raise NotFoundError(f"credential {op.credential_id} not found")
        if record.status is CredentialStatus.REVOKED:
            raise AlreadyRevokedError(f"credential {op.credential_id} already revoked")
        if op.fingerprint in self._pending:
            raise AlreadyInProgressError(f"fingerprint {op.fingerprint} is in flight")
        self._pending[op.fingerprint] = op

    async def release_revocation(self, fingerprint: str) -> None:
        op = self._pending.get(fingerprint)
        if op is not None and op.stage is PendingStage.RESERVED:
            del self._pending[fingerprint]

    async def confirm_pending(
        self, fingerprint: str, ledger_ref: str | None
    ) -> PendingOperation:
        op = self._pending.get(fingerprint)
        if op is None:
            raise NotFoundError(f"no pending operation for {fingerprint}")
        confirmed = op.confirmed(ledger_ref)
        self._pending[fingerprint] = confirmed
        return confirmed

    async def complete_issuance(
        self, fingerprint: str, record: CredentialRecord
    ) -> CredentialRecord:
        existing = self._credentials.get(record.credential_id)
        if existing is not None:
            self._pending.pop(fingerprint, None)
            return existing

        e = self._enrollment_or_raise(record.subject_id, record.course)
        certified = e.transition(
            EnrollmentStatus.CERTIFIED, credential_id=record.credential_id
        )

        self._credentials[record.credential_id] = record
        self._credentials_by_subject.setdefault(record.subject_id, []).append(
            record.credential_id
        )
        self._put_enrollment(certified)
        self._pending.pop(fingerprint, None)
        return record

    async def complete_revocation(
        self, fingerprint: str, *, revoked_at: int
    ) -> CredentialRecord:
        op = self._pending.get(fingerprint)
        if op is None or op.kind is not OperationKind.REVOKE:
            raise NotFoundError(f"no pending revocation for {fingerprint}")
        record = self._credentials.get(op.credential_id)
        if record is None:
            raise NotFoundError(f"credential {op.credential_id} not found")

        if record.status is CredentialStatus.ISSUED:
            record = record.revoke(at=revoked_at)
        e = self._enrollment_or_raise(record.subject_id, record.course)
        if e.status is EnrollmentStatus.CERTIFIED:
            e = e.transition(EnrollmentStatus.REVOKED)

        self._credentials[record.credential_id] = record
        self._put_enrollment(e)
        del self._pending[fingerprint]
        return record

    # --- institutions ------------------------------------------------------

    async def add_institution(self, institution: Institution) -> None:
        if institution.identity in self._institutions:
            raise DuplicateInstitutionError(
                f"identity {institution.identity} already registered"
            )
        if any(i.name == institution.name for i in self._institutions.values()):
            raise DuplicateInstitutionError(
                f"institution {institution.name} already exists"
            )
        self._institutions[institution.identity] = institution

    async def get_institution(self, identity: str) -> Institution | None:
        return self._institutions.get(identity)

    async def list_institutions(self) -> list[Institution]:
        return list(self._institutions.values())

    async def set_minter(self, identity: str) -> Institution | None:
        i = self._institutions.get(identity)
        if i is None:
            return None
        updated = replace(i, is_minter=True)
        self._institutions[identity] = updated
        return updated


def ensure_enrolled(e: Enrollment) -> None:
    """Shared by both registries: reject issuance from any other status."""
    if e.status is EnrollmentStatus.CERTIFIED:
        raise AlreadyCertifiedError(f"{e.subject_id}/{e.course} is already certified")
    if e.status is EnrollmentStatus.REVOKED:
        raise EnrollmentRevokedError(f"{e.subject_id}/{e.course} was revoked")
    if e.status is EnrollmentStatus.ISSUING:
        raise AlreadyInProgressError(f"{e.subject_id}/{e.course} is being issued")

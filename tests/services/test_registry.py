from __future__ import annotations

import asyncio

import pytest

from certchain.core.errors import (
    AlreadyCertifiedError,
    AlreadyEnrolledError,
    AlreadyInProgressError,
    DuplicateSubjectError,
    InvalidTransitionError,
    NotFoundError,
)
from certchain.models.credential import (
    CredentialRecord,
    OperationKind,
    PendingOperation,
    PendingStage,
)
from certchain.models.subject import Enrollment, EnrollmentStatus, Subject
from certchain.repos.registry import InMemoryCredentialRegistry

COURSE = "Blockchain 101"


def _op(fp: str = "0xfp", credential_id: str = "CERT-1") -> PendingOperation:
    return PendingOperation(
        fingerprint=fp,
        kind=OperationKind.ISSUE,
        credential_id=credential_id,
        subject_id="S-1",
        subject_name="Ada",
        course=COURSE,
        created_at=0,
    )


def _record(credential_id: str = "CERT-1") -> CredentialRecord:
    return CredentialRecord(
        credential_id=credential_id,
        subject_id="S-1",
        subject_name="Ada",
        course=COURSE,
        fingerprint="0xfp",
        ledger_ref="0xtx",
        content_address="addr",
        issued_at=1,
    )


def _registry() -> InMemoryCredentialRegistry:
    reg = InMemoryCredentialRegistry()

    async def seed():
        await reg.add_subject(Subject.new(subject_id="S-1", name="Ada", contact="a@x.io"))
        await reg.add_enrollment("S-1", COURSE)

    asyncio.run(seed())
    return reg


def _status(reg: InMemoryCredentialRegistry) -> EnrollmentStatus:
    return asyncio.run(reg.get_subject("S-1")).enrollment(COURSE).status


def test_enrollment_transitions() -> None:
    e = Enrollment(subject_id="S-1", course=COURSE)
    issuing = e.transition(EnrollmentStatus.ISSUING)
    certified = issuing.transition(EnrollmentStatus.CERTIFIED, credential_id="CERT-1")
    assert certified.credential_id == "CERT-1"
    assert certified.transition(EnrollmentStatus.REVOKED).status is EnrollmentStatus.REVOKED

    with pytest.raises(InvalidTransitionError):
        e.transition(EnrollmentStatus.CERTIFIED)
    with pytest.raises(InvalidTransitionError):
        certified.transition(EnrollmentStatus.ENROLLED)


def test_duplicate_subject_and_contact_rejected() -> None:
    reg = _registry()
    with pytest.raises(DuplicateSubjectError):
        asyncio.run(reg.add_subject(Subject.new(subject_id="S-1", name="Other")))
    with pytest.raises(DuplicateSubjectError):
        asyncio.run(
            reg.add_subject(Subject.new(subject_id="S-2", name="B", contact="a@x.io"))
        )


def test_duplicate_enrollment_rejected() -> None:
    reg = _registry()
    with pytest.raises(AlreadyEnrolledError):
        asyncio.run(reg.add_enrollment("S-1", COURSE))


def test_update_subject_moves_contact_index() -> None:
    reg = _registry()
    asyncio.run(reg.update_subject("S-1", contact="new@x.io"))
    assert asyncio.run(reg.get_subject_by_contact("a@x.io")) is None
    assert asyncio.run(reg.get_subject_by_contact("new@x.io")).subject_id == "S-1"


def test_clear_contact_frees_it_for_reuse() -> None:
    reg = _registry()
    cleared = asyncio.run(reg.update_subject("S-1", clear_contact=True))

    assert cleared.contact is None
    assert asyncio.run(reg.get_subject_by_contact("a@x.io")) is None
    asyncio.run(reg.add_subject(Subject.new(subject_id="S-2", name="B", contact="a@x.io")))
    assert asyncio.run(reg.get_subject_by_contact("a@x.io")).subject_id == "S-2"


def test_reserve_is_a_compare_and_set() -> None:
    reg = _registry()
    asyncio.run(reg.reserve_issuance(_op()))
    assert _status(reg) is EnrollmentStatus.ISSUING

    with pytest.raises(AlreadyInProgressError):
        asyncio.run(reg.reserve_issuance(_op(credential_id="CERT-2")))


def test_release_only_undoes_unconfirmed_reservations() -> None:
    reg = _registry()
    asyncio.run(reg.reserve_issuance(_op()))
    asyncio.run(reg.confirm_pending("0xfp", "0xtx"))

    asyncio.run(reg.release_issuance("0xfp"))

    pending = asyncio.run(reg.get_pending("0xfp"))
    assert pending.stage is PendingStage.LEDGER_CONFIRMED
    assert _status(reg) is EnrollmentStatus.ISSUING


def test_complete_issuance_is_idempotent() -> None:
    reg = _registry()
    asyncio.run(reg.reserve_issuance(_op()))

    first = asyncio.run(reg.complete_issuance("0xfp", _record()))
    second = asyncio.run(reg.complete_issuance("0xfp", _record()))

    assert first == second
    assert len(asyncio.run(reg.list_credentials_for_subject("S-1"))) == 1
    assert _status(reg) is EnrollmentStatus.CERTIFIED
    with pytest.raises(AlreadyCertifiedError):
        asyncio.run(reg.reserve_issuance(_op(fp="0xother")))


def test_confirm_without_reservation_is_not_found() -> None:
    reg = _registry()
    with pytest.raises(NotFoundError):
        asyncio.run(reg.confirm_pending("0xnothing", None))

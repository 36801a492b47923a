"""Subject and institution administration."""

from __future__ import annotations

import asyncio

import pytest

from certchain.container import Services, in_memory_services
from certchain.core.errors import (
    AlreadyEnrolledError,
    DuplicateInstitutionError,
    DuplicateSubjectError,
    LedgerUnavailableError,
    NotFoundError,
    ValidationError,
)
from certchain.models.subject import EnrollmentStatus
from certchain.services.ledger import InMemoryVerificationLedger

WALLET = "0xAbCdEf0123456789abcdef0123456789ABCDEF01"


class DownLedger(InMemoryVerificationLedger):
    async def grant_minter(self, identity: str) -> str:
        raise LedgerUnavailableError("ledger unreachable")


# ---- subjects ----


def test_register_normalizes_contact(services: Services) -> None:
    subject = asyncio.run(
        services.subjects.register(
            subject_id="S-1", name="  Ada Lovelace ", contact=" Ada@Example.COM "
        )
    )
    assert subject.name == "Ada Lovelace"
    assert subject.contact == "ada@example.com"


@pytest.mark.parametrize("subject_id", ["", "has space", "-leading", "x" * 65])
def test_register_rejects_bad_subject_id(services: Services, subject_id: str) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(services.subjects.register(subject_id=subject_id, name="Ada"))


def test_register_rejects_blank_name(services: Services) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(services.subjects.register(subject_id="S-1", name="   "))


def test_register_duplicate_contact(services: Services) -> None:
    asyncio.run(services.subjects.register(subject_id="S-1", name="A", contact="a@x.io"))
    with pytest.raises(DuplicateSubjectError):
        asyncio.run(
            services.subjects.register(subject_id="S-2", name="B", contact="A@X.IO")
        )


def test_enroll_and_duplicate_enroll(services: Services) -> None:
    asyncio.run(services.subjects.register(subject_id="S-1", name="Ada"))

    subject = asyncio.run(services.subjects.enroll("S-1", "Blockchain 101"))
    assert [e.course for e in subject.enrollments] == ["Blockchain 101"]
    assert subject.enrollments[0].status is EnrollmentStatus.ENROLLED

    with pytest.raises(AlreadyEnrolledError):
        asyncio.run(services.subjects.enroll("S-1", "Blockchain 101"))


def test_enroll_unknown_subject(services: Services) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(services.subjects.enroll("ghost", "Blockchain 101"))


def test_update_unknown_subject(services: Services) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(services.subjects.update("ghost", name="X"))


def test_update_contact_change_and_clear(services: Services) -> None:
    asyncio.run(services.subjects.register(subject_id="S-1", name="Ada", contact="a@x.io"))

    renamed = asyncio.run(services.subjects.update("S-1", name="Ada King"))
    assert renamed.contact == "a@x.io"

    cleared = asyncio.run(services.subjects.update("S-1", contact="   "))
    assert cleared.name == "Ada King"
    assert cleared.contact is None
    assert asyncio.run(services.registry.get_subject_by_contact("a@x.io")) is None


def test_list_subjects_sorted_by_name(services: Services) -> None:
    asyncio.run(services.subjects.register(subject_id="S-2", name="Grace"))
    asyncio.run(services.subjects.register(subject_id="S-1", name="Ada"))
    names = [s.name for s in asyncio.run(services.subjects.list())]
    assert names == ["Ada", "Grace"]


# ---- institutions ----


def test_add_institution_lowercases_identity(services: Services) -> None:
    inst = asyncio.run(services.institutions.add(name="Uni", identity=WALLET))
    assert inst.identity == WALLET.lower()
    assert inst.is_minter is False


@pytest.mark.parametrize("identity", ["", "0x123", "ab" * 20, "0x" + "g" * 40])
def test_add_institution_rejects_bad_identity(services: Services, identity: str) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(services.institutions.add(name="Uni", identity=identity))


def test_add_institution_duplicates(services: Services) -> None:
    asyncio.run(services.institutions.add(name="Uni", identity=WALLET))
    with pytest.raises(DuplicateInstitutionError):
        asyncio.run(services.institutions.add(name="Other", identity=WALLET.lower()))
    with pytest.raises(DuplicateInstitutionError):
        asyncio.run(services.institutions.add(name="Uni", identity="0x" + "2" * 40))


def test_grant_minter_goes_through_ledger(services: Services) -> None:
    asyncio.run(services.institutions.add(name="Uni", identity=WALLET))

    inst = asyncio.run(services.institutions.grant_minter(WALLET))

    assert inst.is_minter is True
    assert WALLET.lower() in services.ledger._minters


def test_grant_minter_unknown_institution(services: Services) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(services.institutions.grant_minter(WALLET))


def test_grant_minter_ledger_down_leaves_registry_unchanged() -> None:
    svc = in_memory_services(ledger=DownLedger())
    asyncio.run(svc.institutions.add(name="Uni", identity=WALLET))

    with pytest.raises(LedgerUnavailableError):
        asyncio.run(svc.institutions.grant_minter(WALLET))

    inst = asyncio.run(svc.registry.get_institution(WALLET.lower()))
    assert inst.is_minter is False

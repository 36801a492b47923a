"""PostgreSQL implementation of CredentialRegistry."""

from __future__ import annotations

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from certchain.core.errors import (
    AlreadyEnrolledError,
    AlreadyInProgressError,
    AlreadyRevokedError,
    DuplicateInstitutionError,
    DuplicateSubjectError,
    InvalidTransitionError,
    NotFoundError,
)
from certchain.db.tables import (
    CredentialRecordRow,
    EnrollmentRow,
    InstitutionRow,
    PendingOperationRow,
    SubjectRow,
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
from certchain.repos.registry import ensure_enrolled


class PgCredentialRegistry:
    """Satisfies the CredentialRegistry Protocol using PostgreSQL.

    Each method runs in its own transaction.  Status changes are
    conditional UPDATEs (``WHERE status = <expected>``) so two API
    processes racing on the same enrollment cannot both win: the loser
    sees rowcount 0.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # --- subjects & enrollments --------------------------------------------

    async def _load_subject(self, session: AsyncSession, row: SubjectRow) -> Subject:
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.subject_id == row.subject_id)
            .order_by(EnrollmentRow.position)
        )
        enrollments = (await session.execute(stmt)).scalars().all()
        return Subject(
            subject_id=row.subject_id,
            name=row.name,
            contact=row.contact,
            enrollments=tuple(_row_to_enrollment(e) for e in enrollments),
        )

    async def get_subject(self, subject_id: str) -> Subject | None:
        async with self._session_factory() as session:
            row = await session.get(SubjectRow, subject_id)
            if row is None:
                return None
            return await self._load_subject(session, row)

    async def get_subject_by_contact(self, contact: str) -> Subject | None:
        async with self._session_factory() as session:
            stmt = select(SubjectRow).where(SubjectRow.contact == contact)
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None
            return await self._load_subject(session, row)

    async def list_subjects(self) -> list[Subject]:
        async with self._session_factory() as session:
            rows = (
                (await session.execute(select(SubjectRow).order_by(SubjectRow.name)))
                .scalars()
                .all()
            )
            return [await self._load_subject(session, r) for r in rows]

    async def add_subject(self, subject: Subject) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                session.add(
                    SubjectRow(
                        subject_id=subject.subject_id,
                        name=subject.name,
                        contact=subject.contact,
                    )
                )
        except IntegrityError:
            raise DuplicateSubjectError(
                f"subject {subject.subject_id} or its contact already exists"
            ) from None

    async def update_subject(
        self,
        subject_id: str,
        *,
        name: str | None = None,
        contact: str | None = None,
        clear_contact: bool = False,
    ) -> Subject | None:
        values: dict[str, str | None] = {}
        if name is not None:
            values["name"] = name
        if clear_contact:
            values["contact"] = None
        elif contact is not None:
            values["contact"] = contact
        try:
            async with self._session_factory() as session, session.begin():
                row = await session.get(SubjectRow, subject_id)
                if row is None:
                    return None
                if values:
                    await session.execute(
                        update(SubjectRow)
                        .where(SubjectRow.subject_id == subject_id)
                        .values(**values)
                    )
                    await session.refresh(row)
                return await self._load_subject(session, row)
        except IntegrityError:
            raise DuplicateSubjectError(f"contact {contact} already in use") from None

    async def add_enrollment(self, subject_id: str, course: str) -> Subject:
        try:
            async with self._session_factory() as session, session.begin():
                row = await session.get(SubjectRow, subject_id)
                if row is None:
                    raise NotFoundError(f"subject {subject_id} not found")
                if await session.get(EnrollmentRow, (subject_id, course)) is not None:
                    raise AlreadyEnrolledError(
                        f"subject {subject_id} already enrolled in {course}"
                    )
                position = (
                    await session.execute(
                        select(func.count())
                        .select_from(EnrollmentRow)
                        .where(EnrollmentRow.subject_id == subject_id)
                    )
                ).scalar_one()
                session.add(
                    EnrollmentRow(
                        subject_id=subject_id,
                        course=course,
                        position=position,
                        status=EnrollmentStatus.ENROLLED.value,
                    )
                )
                await session.flush()
                return await self._load_subject(session, row)
        except IntegrityError:
            # Lost a race with a concurrent enroll for the same course.
            raise AlreadyEnrolledError(
                f"subject {subject_id} already enrolled in {course}"
            ) from None

    # --- credential records ------------------------------------------------

    async def get_credential(self, credential_id: str) -> CredentialRecord | None:
        async with self._session_factory() as session:
            row = await session.get(CredentialRecordRow, credential_id)
            return _row_to_record(row) if row is not None else None

    async def list_credentials_for_subject(
        self, subject_id: str
    ) -> list[CredentialRecord]:
        async with self._session_factory() as session:
            stmt = (
                select(CredentialRecordRow)
                .where(CredentialRecordRow.subject_id == subject_id)
                .order_by(CredentialRecordRow.issued_at)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_record(r) for r in rows]

    # --- protocol steps ----------------------------------------------------

    async def get_pending(self, fingerprint: str) -> PendingOperation | None:
        async with self._session_factory() as session:
            row = await session.get(PendingOperationRow, fingerprint)
            return _row_to_pending(row) if row is not None else None

    async def list_pending(self) -> list[PendingOperation]:
        async with self._session_factory() as session:
            stmt = select(PendingOperationRow).order_by(PendingOperationRow.created_at)
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_pending(r) for r in rows]

    async def reserve_issuance(self, op: PendingOperation) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    _set_enrollment_status(
                        op.subject_id,
                        op.course,
                        expected=EnrollmentStatus.ENROLLED,
                        to=EnrollmentStatus.ISSUING,
                    )
                )
                if result.rowcount == 0:
                    row = await session.get(EnrollmentRow, (op.subject_id, op.course))
                    if row is None:
                        raise NotFoundError(
                            f"subject {op.subject_id} is not enrolled in {op.course}"
                        )
                    ensure_enrolled(_row_to_enrollment(row))
                session.add(_pending_to_row(op))
        except IntegrityError:
            raise AlreadyInProgressError(
                f"fingerprint {op.fingerprint} is in flight"
            ) from None

    async def release_issuance(self, fingerprint: str) -> None:
        async with self._session_factory() as session, session.begin():
            row = await session.get(PendingOperationRow, fingerprint, with_for_update=True)
            if row is None or row.stage != PendingStage.RESERVED.value:
                return
            await session.execute(
                _set_enrollment_status(
                    row.subject_id,
                    row.course,
                    expected=EnrollmentStatus.ISSUING,
                    to=EnrollmentStatus.ENROLLED,
                )
            )
            await session.delete(row)

    async def reserve_revocation(self, op: PendingOperation) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                record = await session.get(
                    CredentialRecordRow, op.credential_id, with_for_update=True
                )
                if record is None:
                    raise NotFoundError(f"credential {op.credential_id} not found")
                if record.status == CredentialStatus.REVOKED.value:
                    raise AlreadyRevokedError(
                        f"credential {op.credential_id} already revoked"
                    )
                session.add(_pending_to_row(op))
        except IntegrityError:
            raise AlreadyInProgressError(
                f"fingerprint {op.fingerprint} is in flight"
            ) from None

    async def release_revocation(self, fingerprint: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(PendingOperationRow).where(
                    PendingOperationRow.fingerprint == fingerprint,
                    PendingOperationRow.stage == PendingStage.RESERVED.value,
                )
            )

    async def confirm_pending(
        self, fingerprint: str, ledger_ref: str | None
    ) -> PendingOperation:
        async with self._session_factory() as session, session.begin():
            row = await session.get(PendingOperationRow, fingerprint, with_for_update=True)
            if row is None:
                raise NotFoundError(f"no pending operation for {fingerprint}")
            row.stage = PendingStage.LEDGER_CONFIRMED.value
            row.ledger_ref = ledger_ref
            return _row_to_pending(row)

    async def complete_issuance(
        self, fingerprint: str, record: CredentialRecord
    ) -> CredentialRecord:
        async with self._session_factory() as session, session.begin():
            existing = await session.get(CredentialRecordRow, record.credential_id)
            if existing is not None:
                await _delete_pending(session, fingerprint)
                return _row_to_record(existing)

            stmt = _set_enrollment_status(
                record.subject_id,
                record.course,
                expected=EnrollmentStatus.ISSUING,
                to=EnrollmentStatus.CERTIFIED,
            ).values(credential_id=record.credential_id)
            if (await session.execute(stmt)).rowcount == 0:
                raise InvalidTransitionError(
                    f"enrollment {record.subject_id}/{record.course} is not issuing"
                )
            session.add(_record_to_row(record))
            await _delete_pending(session, fingerprint)
            return record

    async def complete_revocation(
        self, fingerprint: str, *, revoked_at: int
    ) -> CredentialRecord:
        async with self._session_factory() as session, session.begin():
            op = await session.get(PendingOperationRow, fingerprint, with_for_update=True)
            if op is None or op.kind != OperationKind.REVOKE.value:
                raise NotFoundError(f"no pending revocation for {fingerprint}")

            await session.execute(
                update(CredentialRecordRow)
                .where(
                    CredentialRecordRow.credential_id == op.credential_id,
                    CredentialRecordRow.status == CredentialStatus.ISSUED.value,
                )
                .values(status=CredentialStatus.REVOKED.value, revoked_at=revoked_at)
            )
            await session.execute(
                _set_enrollment_status(
                    op.subject_id,
                    op.course,
                    expected=EnrollmentStatus.CERTIFIED,
                    to=EnrollmentStatus.REVOKED,
                )
            )
            await session.delete(op)
            await session.flush()

            row = await session.get(CredentialRecordRow, op.credential_id)
            if row is None:
                raise NotFoundError(f"credential {op.credential_id} not found")
            await session.refresh(row)
            return _row_to_record(row)

    # --- institutions ------------------------------------------------------

    async def add_institution(self, institution: Institution) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                session.add(
                    InstitutionRow(
                        identity=institution.identity,
                        name=institution.name,
                        is_minter=institution.is_minter,
                    )
                )
        except IntegrityError:
            raise DuplicateInstitutionError(
                f"institution {institution.name} or identity already exists"
            ) from None

    async def get_institution(self, identity: str) -> Institution | None:
        async with self._session_factory() as session:
            row = await session.get(InstitutionRow, identity)
            return _row_to_institution(row) if row is not None else None

    async def list_institutions(self) -> list[Institution]:
        async with self._session_factory() as session:
            rows = (await session.execute(select(InstitutionRow))).scalars().all()
            return [_row_to_institution(r) for r in rows]

    async def set_minter(self, identity: str) -> Institution | None:
        async with self._session_factory() as session, session.begin():
            row = await session.get(InstitutionRow, identity, with_for_update=True)
            if row is None:
                return None
            row.is_minter = True
            return _row_to_institution(row)


# ---------------------------------------------------------------------------
# Row <-> model helpers
# ---------------------------------------------------------------------------


def _set_enrollment_status(
    subject_id: str, course: str, *, expected: EnrollmentStatus, to: EnrollmentStatus
):
    return (
        update(EnrollmentRow)
        .where(
            EnrollmentRow.subject_id == subject_id,
            EnrollmentRow.course == course,
            EnrollmentRow.status == expected.value,
        )
        .values(status=to.value)
    )


async def _delete_pending(session: AsyncSession, fingerprint: str) -> None:
    await session.execute(
        delete(PendingOperationRow).where(PendingOperationRow.fingerprint == fingerprint)
    )


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        subject_id=row.subject_id,
        course=row.course,
        status=EnrollmentStatus(row.status),
        credential_id=row.credential_id,
    )


def _row_to_record(row: CredentialRecordRow) -> CredentialRecord:
    return CredentialRecord(
        credential_id=row.credential_id,
        subject_id=row.subject_id,
        subject_name=row.subject_name,
        course=row.course,
        fingerprint=row.fingerprint,
        ledger_ref=row.ledger_ref,
        content_address=row.content_address,
        issued_at=row.issued_at,
        status=CredentialStatus(row.status),
        revoked_at=row.revoked_at,
    )


def _record_to_row(record: CredentialRecord) -> CredentialRecordRow:
    return CredentialRecordRow(
        credential_id=record.credential_id,
        subject_id=record.subject_id,
        subject_name=record.subject_name,
        course=record.course,
        fingerprint=record.fingerprint,
        ledger_ref=record.ledger_ref,
        content_address=record.content_address,
        status=record.status.value,
        issued_at=record.issued_at,
        revoked_at=record.revoked_at,
    )


def _row_to_pending(row: PendingOperationRow) -> PendingOperation:
    return PendingOperation(
        fingerprint=row.fingerprint,
        kind=OperationKind(row.kind),
        stage=PendingStage(row.stage),
        credential_id=row.credential_id,
        subject_id=row.subject_id,
        subject_name=row.subject_name,
        course=row.course,
        ledger_ref=row.ledger_ref,
        created_at=row.created_at,
    )


def _pending_to_row(op: PendingOperation) -> PendingOperationRow:
    return PendingOperationRow(
        fingerprint=op.fingerprint,
        kind=op.kind.value,
        stage=op.stage.value,
        credential_id=op.credential_id,
        subject_id=op.subject_id,
        subject_name=op.subject_name,
        course=op.course,
        ledger_ref=op.ledger_ref,
        created_at=op.created_at,
    )


def _row_to_institution(row: InstitutionRow) -> Institution:
    return Institution(name=row.name, identity=row.identity, is_minter=row.is_minter)

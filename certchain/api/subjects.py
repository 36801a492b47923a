"""Subject registration, enrollment and public lookup."""

from __future__ import annotations

from fastapi import APIRouter, status
from pydantic import BaseModel

from certchain.api.dependencies import AdminDep, ServicesDep
from certchain.api.errors import http_error
from certchain.core.errors import CredentialServiceError
from certchain.models.subject import Subject

router = APIRouter(prefix="/v1/subjects", tags=["subjects"])


class SubjectIn(BaseModel):
    subject_id: str
    name: str
    contact: str | None = None


class SubjectPatch(BaseModel):
    name: str | None = None
    contact: str | None = None


class EnrollmentIn(BaseModel):
    course: str


class LookupIn(BaseModel):
    subject_id: str | None = None
    contact: str | None = None


class EnrollmentOut(BaseModel):
    course: str
    status: str
    credential_id: str | None


class SubjectOut(BaseModel):
    subject_id: str
    name: str
    contact: str | None
    enrollments: list[EnrollmentOut]


class CredentialSummaryOut(BaseModel):
    credential_id: str
    course: str
    subject_name: str
    issued_at: int
    content_link: str


class PublicSubjectOut(BaseModel):
    subject_id: str
    name: str


class LookupOut(BaseModel):
    subject: PublicSubjectOut
    credentials: list[CredentialSummaryOut]


def _subject_out(s: Subject) -> SubjectOut:
    return SubjectOut(
        subject_id=s.subject_id,
        name=s.name,
        contact=s.contact,
        enrollments=[
            EnrollmentOut(
                course=e.course, status=e.status.value, credential_id=e.credential_id
            )
            for e in s.enrollments
        ],
    )


@router.post("", response_model=SubjectOut, status_code=status.HTTP_201_CREATED)
async def register_subject(
    body: SubjectIn, services: ServicesDep, _admin: AdminDep
) -> SubjectOut:
    try:
        subject = await services.subjects.register(
            subject_id=body.subject_id, name=body.name, contact=body.contact
        )
    except CredentialServiceError as e:
        raise http_error(e) from None
    return _subject_out(subject)


@router.get("", response_model=list[SubjectOut])
async def list_subjects(services: ServicesDep, _admin: AdminDep) -> list[SubjectOut]:
    return [_subject_out(s) for s in await services.subjects.list()]


@router.patch("/{subject_id}", response_model=SubjectOut)
async def update_subject(
    subject_id: str, body: SubjectPatch, services: ServicesDep, _admin: AdminDep
) -> SubjectOut:
    # An explicit null or blank contact clears it; an absent one leaves it alone.
    contact = (body.contact or "") if "contact" in body.model_fields_set else None
    try:
        subject = await services.subjects.update(
            subject_id, name=body.name, contact=contact
        )
    except CredentialServiceError as e:
        raise http_error(e) from None
    return _subject_out(subject)


@router.post("/{subject_id}/enrollments", response_model=SubjectOut)
async def enroll_subject(
    subject_id: str, body: EnrollmentIn, services: ServicesDep, _admin: AdminDep
) -> SubjectOut:
    try:
        subject = await services.subjects.enroll(subject_id, body.course)
    except CredentialServiceError as e:
        raise http_error(e) from None
    return _subject_out(subject)


@router.post("/lookup", response_model=LookupOut)
async def lookup_subject(body: LookupIn, services: ServicesDep) -> LookupOut:
    """Public: a subject's issued credentials, by id or contact."""
    try:
        found = await services.verifier.lookup_by_subject(
            subject_id=body.subject_id, contact=body.contact
        )
    except CredentialServiceError as e:
        raise http_error(e) from None
    return LookupOut(
        subject=PublicSubjectOut(
            subject_id=found.subject.subject_id, name=found.subject.name
        ),
        credentials=[
            CredentialSummaryOut(
                credential_id=r.credential_id,
                course=r.course,
                subject_name=r.subject_name,
                issued_at=r.issued_at,
                content_link=services.archive.resolve(r.content_address),
            )
            for r in found.credentials
        ],
    )

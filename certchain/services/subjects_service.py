from __future__ import annotations

import logging
import re

from certchain.core.errors import NotFoundError, ValidationError
from certchain.core.metrics import CREDENTIAL_OPERATIONS
from certchain.models.subject import Subject
from certchain.repos.registry import CredentialRegistry

logger = logging.getLogger(__name__)

_SUBJECT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")
_MAX_NAME = 255
_MAX_CONTACT = 320
_MAX_COURSE = 500


def normalize_contact(contact: str | None) -> str | None:
    """Contacts (email or phone) compare case-insensitively; blank means none."""
    if contact is None:
        return None
    contact = contact.strip().lower()
    if not contact:
        return None
    if len(contact) > _MAX_CONTACT:
        raise ValidationError("contact is too long")
    return contact


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name must be non-empty")
    if len(name) > _MAX_NAME:
        raise ValidationError("name is too long")
    return name


class SubjectsService:
    def __init__(self, registry: CredentialRegistry) -> None:
        self._registry = registry

    async def register(
        self, *, subject_id: str, name: str, contact: str | None = None
    ) -> Subject:
        subject_id = (subject_id or "").strip()
        if not _SUBJECT_ID_RE.match(subject_id):
            logger.warning("Rejected subject_id=%r", subject_id)
            raise ValidationError(
                "subject_id must be 1-64 letters, digits, '.', '_' or '-'"
            )
        subject = Subject.new(
            subject_id=subject_id,
            name=_clean_name(name),
            contact=normalize_contact(contact),
        )
        await self._registry.add_subject(subject)
        logger.info("Registered subject", extra={"subject_id": subject_id})
        return subject

    async def update(
        self,
        subject_id: str,
        *,
        name: str | None = None,
        contact: str | None = None,
    ) -> Subject:
        """Edit name and/or contact.  Issued credentials keep their snapshot.

        ``None`` leaves a field unchanged; a blank contact removes it.
        """
        cleaned = normalize_contact(contact)
        updated = await self._registry.update_subject(
            subject_id,
            name=_clean_name(name) if name is not None else None,
            contact=cleaned,
            clear_contact=contact is not None and cleaned is None,
        )
        if updated is None:
            raise NotFoundError(f"subject {subject_id} not found")
        logger.info("Updated subject", extra={"subject_id": subject_id})
        return updated

    async def enroll(self, subject_id: str, course: str) -> Subject:
        course = (course or "").strip()
        if not course:
            raise ValidationError("course must be non-empty")
        if len(course) > _MAX_COURSE:
            raise ValidationError("course is too long")
        try:
            subject = await self._registry.add_enrollment(subject_id, course)
        except Exception as exc:
            CREDENTIAL_OPERATIONS.labels(
                operation="enroll", outcome=getattr(exc, "code", "error")
            ).inc()
            raise
        CREDENTIAL_OPERATIONS.labels(operation="enroll", outcome="success").inc()
        logger.info("Enrolled in %s", course, extra={"subject_id": subject_id})
        return subject

    async def get(self, subject_id: str) -> Subject:
        subject = await self._registry.get_subject(subject_id)
        if subject is None:
            raise NotFoundError(f"subject {subject_id} not found")
        return subject

    async def list(self) -> list[Subject]:
        return await self._registry.list_subjects()

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum

from certchain.core.errors import InvalidTransitionError


class EnrollmentStatus(StrEnum):
    ENROLLED = "enrolled"
    ISSUING = "issuing"  # ledger commit reserved or confirmed, not yet recorded
    CERTIFIED = "certified"
    REVOKED = "revoked"


# ISSUING -> ENROLLED is only taken when the ledger commit did not happen.
_ENROLLMENT_TRANSITIONS: dict[EnrollmentStatus, frozenset[EnrollmentStatus]] = {
    EnrollmentStatus.ENROLLED: frozenset({EnrollmentStatus.ISSUING}),
    EnrollmentStatus.ISSUING: frozenset(
        {EnrollmentStatus.CERTIFIED, EnrollmentStatus.ENROLLED}
    ),
    EnrollmentStatus.CERTIFIED: frozenset({EnrollmentStatus.REVOKED}),
    EnrollmentStatus.REVOKED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class Enrollment:
    subject_id: str
    course: str
    status: EnrollmentStatus = EnrollmentStatus.ENROLLED
    credential_id: str | None = None

    def transition(
        self, to: EnrollmentStatus, *, credential_id: str | None = None
    ) -> Enrollment:
        if to not in _ENROLLMENT_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"enrollment {self.subject_id}/{self.course}: "
                f"{self.status} -> {to} not allowed"
            )
        return replace(
            self,
            status=to,
            credential_id=credential_id if credential_id else self.credential_id,
        )


@dataclass(frozen=True, slots=True)
class Subject:
    """A credential holder.

    ``subject_id`` is assigned once and never changes; ``name`` and
    ``contact`` are editable by an administrator.  Credentials keep their
    own snapshot of the name, so an edit here never touches what was
    committed to the ledger.
    """

    subject_id: str
    name: str
    contact: str | None = None
    enrollments: tuple[Enrollment, ...] = ()

    @staticmethod
    def new(*, subject_id: str, name: str, contact: str | None = None) -> Subject:
        return Subject(subject_id=subject_id, name=name, contact=contact)

    def enrollment(self, course: str) -> Enrollment | None:
        for e in self.enrollments:
            if e.course == course:
                return e
        return None

    def with_enrollment(self, enrollment: Enrollment) -> Subject:
        """Replace the enrollment for its course, or append it (keeps order)."""
        updated = []
        found = False
        for e in self.enrollments:
            if e.course == enrollment.course:
                updated.append(enrollment)
                found = True
            else:
                updated.append(e)
        if not found:
            updated.append(enrollment)
        return replace(self, enrollments=tuple(updated))

"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in certchain/models/.
Repos convert between rows and dataclasses; status columns store the
StrEnum values.

Ledger and archive references are opaque strings; nothing here parses
them.
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    ForeignKey,
    ForeignKeyConstraint,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from certchain.db.engine import Base


class SubjectRow(Base):
    __tablename__ = "subjects"

    subject_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact: Mapped[str | None] = mapped_column(
        String(320), unique=True, nullable=True
    )


class EnrollmentRow(Base):
    __tablename__ = "enrollments"

    subject_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("subjects.subject_id"), primary_key=True
    )
    course: Mapped[str] = mapped_column(String(500), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="enrolled"
    )  # enrolled|issuing|certified|revoked
    credential_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


class CredentialRecordRow(Base):
    __tablename__ = "credential_records"

    credential_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("subjects.subject_id"), nullable=False, index=True
    )
    subject_name: Mapped[str] = mapped_column(String(255), nullable=False)
    course: Mapped[str] = mapped_column(String(500), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(66), nullable=False)
    ledger_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_address: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="issued"
    )  # issued|revoked
    issued_at: Mapped[int] = mapped_column(Integer, nullable=False)
    revoked_at: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        ForeignKeyConstraint(
            ["subject_id", "course"], ["enrollments.subject_id", "enrollments.course"]
        ),
        UniqueConstraint("subject_id", "course"),
    )


class PendingOperationRow(Base):
    """Idempotency journal: one row per in-flight fingerprint."""

    __tablename__ = "pending_operations"

    fingerprint: Mapped[str] = mapped_column(String(66), primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # issue|revoke
    stage: Mapped[str] = mapped_column(
        String(32), nullable=False, default="reserved"
    )  # reserved|ledger_confirmed
    credential_id: Mapped[str] = mapped_column(String(64), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    subject_name: Mapped[str] = mapped_column(String(255), nullable=False)
    course: Mapped[str] = mapped_column(String(500), nullable=False)
    ledger_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)


class InstitutionRow(Base):
    __tablename__ = "institutions"

    identity: Mapped[str] = mapped_column(String(42), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_minter: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

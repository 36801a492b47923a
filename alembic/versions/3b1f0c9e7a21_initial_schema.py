"""initial credential schema

Revision ID: 3b1f0c9e7a21
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b1f0c9e7a21"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "subjects",
        sa.Column("subject_id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("contact", sa.String(length=320), nullable=True, unique=True),
    )
    op.create_table(
        "enrollments",
        sa.Column(
            "subject_id",
            sa.String(length=64),
            sa.ForeignKey("subjects.subject_id"),
            primary_key=True,
        ),
        sa.Column("course", sa.String(length=500), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("credential_id", sa.String(length=64), nullable=True),
    )
    op.create_table(
        "credential_records",
        sa.Column("credential_id", sa.String(length=64), primary_key=True),
        sa.Column(
            "subject_id",
            sa.String(length=64),
            sa.ForeignKey("subjects.subject_id"),
            nullable=False,
        ),
        sa.Column("subject_name", sa.String(length=255), nullable=False),
        sa.Column("course", sa.String(length=500), nullable=False),
        sa.Column("fingerprint", sa.String(length=66), nullable=False),
        sa.Column("ledger_ref", sa.Text(), nullable=True),
        sa.Column("content_address", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("issued_at", sa.Integer(), nullable=False),
        sa.Column("revoked_at", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(
            ["subject_id", "course"],
            ["enrollments.subject_id", "enrollments.course"],
        ),
        sa.UniqueConstraint("subject_id", "course"),
    )
    op.create_index(
        "ix_credential_records_subject_id", "credential_records", ["subject_id"]
    )
    op.create_table(
        "pending_operations",
        sa.Column("fingerprint", sa.String(length=66), primary_key=True),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("stage", sa.String(length=32), nullable=False),
        sa.Column("credential_id", sa.String(length=64), nullable=False),
        sa.Column("subject_id", sa.String(length=64), nullable=False),
        sa.Column("subject_name", sa.String(length=255), nullable=False),
        sa.Column("course", sa.String(length=500), nullable=False),
        sa.Column("ledger_ref", sa.Text(), nullable=True),
        sa.Column("created_at", sa.Integer(), nullable=False),
    )
    op.create_table(
        "institutions",
        sa.Column("identity", sa.String(length=42), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("is_minter", sa.Boolean(), nullable=False, server_default=sa.false()),
    )


def downgrade() -> None:
    op.drop_table("institutions")
    op.drop_table("pending_operations")
    op.drop_index("ix_credential_records_subject_id", table_name="credential_records")
    op.drop_table("credential_records")
    op.drop_table("enrollments")
    op.drop_table("subjects")

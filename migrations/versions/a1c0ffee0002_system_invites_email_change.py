"""System settings, system contacts, group invites, email change requests.

Revision ID: a1c0ffee0002
Revises: a1c0ffee0001
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1c0ffee0002"
down_revision: Union[str, Sequence[str], None] = "a1c0ffee0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _soft_delete() -> list[sa.Column]:
    return [
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "systems",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("registration_open", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        *_soft_delete(),
    )

    op.create_table(
        "system_contact_information",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("system_id", sa.Integer(), nullable=False),
        sa.Column("contact_information_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["system_id"], ["systems.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contact_information_id"], ["contact_information.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("system_id", "contact_information_id", name="uq_system_contact_information"),
    )
    op.create_index("ix_system_contact_information_system_id", "system_contact_information", ["system_id"])
    op.create_index(
        "ix_system_contact_information_contact_information_id",
        "system_contact_information",
        ["contact_information_id"],
    )

    op.create_table(
        "group_invites",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("accepted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_group_invites_group_id", "group_invites", ["group_id"])
    op.create_index("idx_group_invites_email", "group_invites", ["email"])

    op.create_table(
        "email_change_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("new_email", sa.String(320), nullable=False),
        sa.Column("verification_token", sa.String(128), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("verification_token"),
    )
    op.create_index("ix_email_change_requests_user_id", "email_change_requests", ["user_id"])


def downgrade() -> None:
    op.drop_table("email_change_requests")
    op.drop_table("group_invites")
    op.drop_table("system_contact_information")
    op.drop_table("systems")

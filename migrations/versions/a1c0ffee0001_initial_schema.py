"""Initial schema: users, people, groups, memberships, contact info, claims, interests, audit.

Revision ID: a1c0ffee0001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1c0ffee0001"
down_revision: Union[str, Sequence[str], None] = None
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
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("verification_token", sa.String(128), nullable=True),
        sa.Column("is_system_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_verification_token", "users", ["verification_token"])

    op.create_table(
        "people",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("display_id", sa.String(128), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=False),
        sa.Column("pronouns", sa.String(64), nullable=True),
        sa.Column("image_url", sa.String(1024), nullable=True),
        sa.Column("interest_vector", sa.JSON(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("display_id"),
    )
    op.create_index("idx_people_user_id", "people", ["user_id"])
    op.create_index("idx_people_deleted", "people", ["deleted"])

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("display_id", sa.String(128), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("parent_group_id", sa.Integer(), nullable=True),
        sa.Column("allows_any_user_to_create_subgroup", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("publicly_visible", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        *_soft_delete(),
        sa.ForeignKeyConstraint(["parent_group_id"], ["groups.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("display_id"),
    )
    op.create_index("idx_groups_parent_group_id", "groups", ["parent_group_id"])
    op.create_index("idx_groups_deleted", "groups", ["deleted"])

    op.create_table(
        "person_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("person_id", sa.Integer(), nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        *_soft_delete(),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("person_id", "group_id", name="uq_person_groups_person_group"),
    )
    op.create_index("idx_person_groups_group_active", "person_groups", ["group_id", "deleted"])
    op.create_index("idx_person_groups_group_admin", "person_groups", ["group_id", "is_admin"])

    op.create_table(
        "contact_information",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("label", sa.String(128), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("privacy", sa.String(16), nullable=False, server_default="PRIVATE"),
        *_timestamps(),
        *_soft_delete(),
    )
    op.create_index("idx_contact_information_type", "contact_information", ["type"])
    op.create_index("idx_contact_information_privacy", "contact_information", ["privacy"])

    op.create_table(
        "person_contact_information",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("person_id", sa.Integer(), nullable=False),
        sa.Column("contact_information_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contact_information_id"], ["contact_information.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("person_id", "contact_information_id", name="uq_person_contact_information"),
    )
    op.create_index("ix_person_contact_information_person_id", "person_contact_information", ["person_id"])
    op.create_index(
        "ix_person_contact_information_contact_information_id", "person_contact_information", ["contact_information_id"]
    )

    op.create_table(
        "group_contact_information",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("contact_information_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contact_information_id"], ["contact_information.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("group_id", "contact_information_id", name="uq_group_contact_information"),
    )
    op.create_index("ix_group_contact_information_group_id", "group_contact_information", ["group_id"])
    op.create_index(
        "ix_group_contact_information_contact_information_id", "group_contact_information", ["contact_information_id"]
    )

    op.create_table(
        "claims",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("person_id", sa.Integer(), nullable=False),
        sa.Column("requesting_user_id", sa.Integer(), nullable=False),
        sa.Column("claim_code", sa.String(128), nullable=False),
        sa.Column("claimed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        *_timestamps(),
        *_soft_delete(),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["requesting_user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("claim_code"),
    )
    op.create_index("ix_claims_person_id", "claims", ["person_id"])

    op.create_table(
        "interests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("category", sa.String(128), nullable=False),
        *_timestamps(),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("idx_interests_category", "interests", ["category"])
    op.create_index("idx_interests_deleted", "interests", ["deleted"])

    op.create_table(
        "person_interests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("person_id", sa.Integer(), nullable=False),
        sa.Column("interest_id", sa.Integer(), nullable=False),
        sa.Column("level", sa.Numeric(3, 2), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["interest_id"], ["interests.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("person_id", "interest_id", name="uq_person_interests_person_interest"),
        sa.CheckConstraint("level >= 0 AND level <= 1", name="ck_person_interests_level"),
    )
    op.create_index("ix_person_interests_person_id", "person_interests", ["person_id"])
    op.create_index("ix_person_interests_interest_id", "person_interests", ["interest_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("original_user_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["original_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("original_user_id", sa.Integer(), nullable=True),
        sa.Column("method", sa.String(16), nullable=False),
        sa.Column("path", sa.String(512), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["original_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("idx_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index("idx_audit_logs_method", "audit_logs", ["method"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("audit_events")
    op.drop_table("person_interests")
    op.drop_table("interests")
    op.drop_table("claims")
    op.drop_table("group_contact_information")
    op.drop_table("person_contact_information")
    op.drop_table("contact_information")
    op.drop_table("person_groups")
    op.drop_table("groups")
    op.drop_table("people")
    op.drop_table("users")

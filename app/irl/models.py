from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

if TYPE_CHECKING:
    from app.irl.modules.persons.models import Person


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    verification_token: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    is_system_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    people: Mapped[list["Person"]] = relationship("Person", back_populates="user", lazy="selectin")

    @property
    def is_active(self) -> bool:
        return not self.deleted


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table intentionally generic; domain modules record what changed via metadata_json.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    original_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "membership.create"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "PersonGroup"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


class AuditLog(Base):
    """One row per API request (outside auth/health), written after the response is built."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_user_id", "user_id"),
        Index("idx_audit_logs_created_at", "created_at"),
        Index("idx_audit_logs_method", "method"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    original_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    method: Mapped[str] = mapped_column(String(16), nullable=False)
    path: Mapped[str] = mapped_column(String(512), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User | None] = relationship(User, foreign_keys=[user_id], lazy="selectin")


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.irl.modules.persons.models import Person  # noqa: E402,F401,F811
from app.irl.modules.groups.models import Group  # noqa: E402,F401
from app.irl.modules.memberships.models import PersonGroup  # noqa: E402,F401
from app.irl.modules.contact_information.models import (  # noqa: E402,F401
    ContactInformation,
    GroupContactInformation,
    PersonContactInformation,
    SystemContactInformation,
)
from app.irl.modules.claims.models import Claim  # noqa: E402,F401
from app.irl.modules.interests.models import Interest, PersonInterest  # noqa: E402,F401
from app.irl.modules.system.models import System  # noqa: E402,F401
from app.irl.modules.group_invites.models import GroupInvite  # noqa: E402,F401
from app.irl.modules.users.models import EmailChangeRequest  # noqa: E402,F401

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.irl.models import Base

if TYPE_CHECKING:
    from app.irl.modules.groups.models import Group
    from app.irl.modules.persons.models import Person


class PersonGroup(Base):
    """Membership of a person in a group. Soft-deleted rows are reactivated on re-add."""

    __tablename__ = "person_groups"
    __table_args__ = (
        UniqueConstraint("person_id", "group_id", name="uq_person_groups_person_group"),
        Index("idx_person_groups_group_active", "group_id", "deleted"),
        Index("idx_person_groups_group_admin", "group_id", "is_admin"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    person_id: Mapped[int] = mapped_column(ForeignKey("people.id", ondelete="RESTRICT"), nullable=False)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id", ondelete="RESTRICT"), nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    person: Mapped["Person"] = relationship("Person", back_populates="memberships", lazy="selectin")
    group: Mapped["Group"] = relationship("Group", back_populates="memberships", lazy="selectin")

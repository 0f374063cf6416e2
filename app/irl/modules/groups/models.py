from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.irl.models import Base

if TYPE_CHECKING:
    from app.irl.modules.memberships.models import PersonGroup


class Group(Base):
    __tablename__ = "groups"
    __table_args__ = (
        Index("idx_groups_parent_group_id", "parent_group_id"),
        Index("idx_groups_deleted", "deleted"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    display_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Adjacency by id; cycles are rejected in the service layer
    parent_group_id: Mapped[int | None] = mapped_column(ForeignKey("groups.id", ondelete="SET NULL"), nullable=True)

    allows_any_user_to_create_subgroup: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    publicly_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    memberships: Mapped[list["PersonGroup"]] = relationship("PersonGroup", back_populates="group", lazy="select")

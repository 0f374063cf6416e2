from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.irl.models import Base

if TYPE_CHECKING:
    from app.irl.models import User
    from app.irl.modules.memberships.models import PersonGroup


class Person(Base):
    __tablename__ = "people"
    __table_args__ = (
        Index("idx_people_user_id", "user_id"),
        Index("idx_people_deleted", "deleted"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Nullable: unclaimed profiles (e.g. created by a group admin) have no owner yet
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    display_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    pronouns: Mapped[str | None] = mapped_column(String(64), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # L2-normalised interest levels, ordered by active interest id
    interest_vector: Mapped[list[float] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    user: Mapped["User | None"] = relationship("User", back_populates="people", lazy="selectin")
    memberships: Mapped[list["PersonGroup"]] = relationship("PersonGroup", back_populates="person", lazy="select")

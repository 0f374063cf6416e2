from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.irl.models import Base


class Interest(Base):
    __tablename__ = "interests"
    __table_args__ = (
        Index("idx_interests_category", "category"),
        Index("idx_interests_deleted", "deleted"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[str] = mapped_column(String(128), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PersonInterest(Base):
    __tablename__ = "person_interests"
    __table_args__ = (
        UniqueConstraint("person_id", "interest_id", name="uq_person_interests_person_interest"),
        CheckConstraint("level >= 0 AND level <= 1", name="ck_person_interests_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    person_id: Mapped[int] = mapped_column(ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    interest_id: Mapped[int] = mapped_column(ForeignKey("interests.id", ondelete="RESTRICT"), nullable=False, index=True)
    level: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    interest: Mapped[Interest] = relationship(Interest, lazy="selectin")

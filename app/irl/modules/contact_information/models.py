from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.irl.models import Base


class ContactInformation(Base):
    __tablename__ = "contact_information"
    __table_args__ = (
        Index("idx_contact_information_type", "type"),
        Index("idx_contact_information_privacy", "privacy"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # EMAIL, PHONE, ADDRESS, URL
    label: Mapped[str] = mapped_column(String(128), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    privacy: Mapped[str] = mapped_column(String(16), nullable=False, default="PRIVATE")  # PRIVATE, PUBLIC

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)


class PersonContactInformation(Base):
    __tablename__ = "person_contact_information"
    __table_args__ = (
        UniqueConstraint("person_id", "contact_information_id", name="uq_person_contact_information"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    person_id: Mapped[int] = mapped_column(ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_information_id: Mapped[int] = mapped_column(
        ForeignKey("contact_information.id", ondelete="CASCADE"), nullable=False, index=True
    )

    contact_information: Mapped[ContactInformation] = relationship(ContactInformation, lazy="selectin")


class GroupContactInformation(Base):
    __tablename__ = "group_contact_information"
    __table_args__ = (
        UniqueConstraint("group_id", "contact_information_id", name="uq_group_contact_information"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_information_id: Mapped[int] = mapped_column(
        ForeignKey("contact_information.id", ondelete="CASCADE"), nullable=False, index=True
    )

    contact_information: Mapped[ContactInformation] = relationship(ContactInformation, lazy="selectin")


class SystemContactInformation(Base):
    __tablename__ = "system_contact_information"
    __table_args__ = (
        UniqueConstraint("system_id", "contact_information_id", name="uq_system_contact_information"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    system_id: Mapped[int] = mapped_column(ForeignKey("systems.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_information_id: Mapped[int] = mapped_column(
        ForeignKey("contact_information.id", ondelete="CASCADE"), nullable=False, index=True
    )

    contact_information: Mapped[ContactInformation] = relationship(ContactInformation, lazy="selectin")

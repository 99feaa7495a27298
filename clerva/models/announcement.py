"""
Module: clerva/models/announcement.py
Unified comment style: module docstring + minimal inline notes.
"""
from datetime import datetime
import enum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, DateTime, Text, ForeignKey, JSON, Index, UniqueConstraint
from clerva.utils.db import Base
from .base import new_id, utcnow


class AnnouncementPriority(str, enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class AnnouncementStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class Announcement(Base):
    __tablename__ = "announcements"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(16), default=AnnouncementPriority.NORMAL.value, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=AnnouncementStatus.DRAFT.value, nullable=False)
    target_role: Mapped[str | None] = mapped_column(String(16), nullable=True)  # FREE / PREMIUM / None=全部
    target_user_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    creator: Mapped["User"] = relationship("User", foreign_keys=[created_by_id])
    dismissals: Mapped[list["AnnouncementDismissal"]] = relationship(
        "AnnouncementDismissal", back_populates="announcement", cascade="all, delete-orphan"
    )


class AnnouncementDismissal(Base):
    __tablename__ = "announcement_dismissals"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    announcement_id: Mapped[str] = mapped_column(ForeignKey("announcements.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    dismissed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    announcement: Mapped["Announcement"] = relationship("Announcement", back_populates="dismissals")

    __table_args__ = (
        UniqueConstraint('announcement_id', 'user_id', name='uq_announcement_dismissal'),
    )


Index("idx_announcements_status", Announcement.status)

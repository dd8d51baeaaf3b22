from __future__ import annotations

from datetime import datetime

from sqlalchemy import Index, String, Text, text as sa_text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from deepscribe.storage.base import Base, UTCDateTime


class Story(Base):
    __tablename__ = "stories"
    __table_args__ = (Index("idx_stories_updated_at", "updated_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    genre: Mapped[str | None] = mapped_column(Text, nullable=True)
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, server_default=sa_text("'active'"))
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=sa_text("CURRENT_TIMESTAMP"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=sa_text("CURRENT_TIMESTAMP"), nullable=False
    )

    chapters: Mapped[list["Chapter"]] = relationship(
        "Chapter",
        back_populates="story",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from deepscribe.domain.protection import Protection, is_protected


@dataclass(frozen=True)
class StoryMetadata:
    """Public view of a story. Safe to return when access is denied."""

    id: str
    title: str
    genre: str | None
    is_protected: bool
    status: str
    created_at: datetime
    updated_at: datetime


@dataclass
class StoryRow:
    id: str
    title: str
    genre: str | None
    protection: Protection
    status: str
    created_at: datetime
    updated_at: datetime

    @property
    def is_protected(self) -> bool:
        return is_protected(self.protection)

    def metadata(self) -> StoryMetadata:
        return StoryMetadata(
            id=self.id,
            title=self.title,
            genre=self.genre,
            is_protected=self.is_protected,
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class ChapterRow:
    id: str
    story_id: str
    chapter_number: int
    title: str | None
    content: str
    summary: str | None
    created_at: datetime


@dataclass
class StoryView:
    metadata: StoryMetadata
    chapters: list[ChapterRow] = field(default_factory=list)

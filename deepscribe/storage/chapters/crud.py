from __future__ import annotations

from datetime import datetime

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from deepscribe.storage.base import as_utc
from deepscribe.storage.chapters.base import Chapter
from deepscribe.storage.types import ChapterRow


def _to_row(chapter: Chapter) -> ChapterRow:
    return ChapterRow(
        id=str(chapter.id),
        story_id=str(chapter.story_id),
        chapter_number=int(chapter.chapter_number),
        title=chapter.title,
        content=str(chapter.content),
        summary=chapter.summary,
        created_at=as_utc(chapter.created_at),
    )


async def insert_chapter(
    session: AsyncSession,
    chapter_id: str,
    story_id: str,
    chapter_number: int,
    content: str,
    summary: str | None,
    now: datetime,
    title: str | None = None,
) -> ChapterRow:
    chapter = Chapter(
        id=chapter_id,
        story_id=story_id,
        chapter_number=chapter_number,
        title=title,
        content=content,
        summary=summary,
        created_at=now,
    )
    session.add(chapter)
    await session.flush()
    return _to_row(chapter)


async def list_chapters(session: AsyncSession, story_id: str) -> list[ChapterRow]:
    result = await session.execute(
        select(Chapter).where(Chapter.story_id == story_id).order_by(Chapter.chapter_number)
    )
    return [_to_row(chapter) for chapter in result.scalars().all()]


async def list_recent_chapters(session: AsyncSession, story_id: str, limit: int) -> list[ChapterRow]:
    """Newest first, as stored. Callers reverse for chronological use."""
    result = await session.execute(
        select(Chapter)
        .where(Chapter.story_id == story_id)
        .order_by(desc(Chapter.chapter_number))
        .limit(limit)
    )
    return [_to_row(chapter) for chapter in result.scalars().all()]

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from deepscribe.domain.protection import protection_from_hash
from deepscribe.storage.base import as_utc
from deepscribe.storage.stories.base import Story
from deepscribe.storage.types import StoryRow


def _to_row(story: Story) -> StoryRow:
    return StoryRow(
        id=str(story.id),
        title=str(story.title),
        genre=story.genre,
        protection=protection_from_hash(story.password_hash),
        status=str(story.status),
        created_at=as_utc(story.created_at),
        updated_at=as_utc(story.updated_at),
    )


async def create_story(
    session: AsyncSession,
    story_id: str,
    title: str,
    genre: str | None,
    password_hash: str | None,
    now: datetime,
) -> StoryRow:
    story = Story(
        id=story_id,
        title=title,
        genre=genre,
        password_hash=password_hash,
        status="active",
        created_at=now,
        updated_at=now,
    )
    session.add(story)
    await session.flush()
    return _to_row(story)


async def get_story(session: AsyncSession, story_id: str) -> StoryRow | None:
    result = await session.execute(select(Story).where(Story.id == story_id))
    story = result.scalar_one_or_none()
    if story is None:
        return None
    return _to_row(story)


async def list_stories(session: AsyncSession) -> list[StoryRow]:
    result = await session.execute(select(Story).order_by(desc(Story.updated_at), Story.id))
    return [_to_row(story) for story in result.scalars().all()]


async def set_password_hash(session: AsyncSession, story_id: str, password_hash: str | None) -> bool:
    result = await session.execute(
        update(Story).where(Story.id == story_id).values(password_hash=password_hash)
    )
    return result.rowcount == 1


async def touch_story(session: AsyncSession, story_id: str, now: datetime) -> bool:
    result = await session.execute(update(Story).where(Story.id == story_id).values(updated_at=now))
    return result.rowcount == 1


async def delete_story(session: AsyncSession, story_id: str) -> bool:
    result = await session.execute(delete(Story).where(Story.id == story_id))
    return result.rowcount == 1

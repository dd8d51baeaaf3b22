from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from deepscribe.storage.chapters import crud as chapters_crud
from deepscribe.storage.stories import crud as stories_crud
from deepscribe.storage.types import ChapterRow, StoryRow


class SQLAlchemyRepo:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_story(
        self,
        story_id: str,
        title: str,
        genre: str | None,
        password_hash: str | None,
        now: datetime,
    ) -> StoryRow:
        return await stories_crud.create_story(
            self.session,
            story_id=story_id,
            title=title,
            genre=genre,
            password_hash=password_hash,
            now=now,
        )

    async def get_story(self, story_id: str) -> StoryRow | None:
        return await stories_crud.get_story(self.session, story_id)

    async def list_stories(self) -> list[StoryRow]:
        return await stories_crud.list_stories(self.session)

    async def set_password_hash(self, story_id: str, password_hash: str | None) -> bool:
        return await stories_crud.set_password_hash(self.session, story_id, password_hash)

    async def touch_story(self, story_id: str, now: datetime) -> bool:
        return await stories_crud.touch_story(self.session, story_id, now)

    async def delete_story(self, story_id: str) -> bool:
        return await stories_crud.delete_story(self.session, story_id)

    async def insert_chapter(
        self,
        chapter_id: str,
        story_id: str,
        chapter_number: int,
        content: str,
        summary: str | None,
        now: datetime,
        title: str | None = None,
    ) -> ChapterRow:
        return await chapters_crud.insert_chapter(
            self.session,
            chapter_id=chapter_id,
            story_id=story_id,
            chapter_number=chapter_number,
            content=content,
            summary=summary,
            now=now,
            title=title,
        )

    async def list_chapters(self, story_id: str) -> list[ChapterRow]:
        return await chapters_crud.list_chapters(self.session, story_id)

    async def list_recent_chapters(self, story_id: str, limit: int) -> list[ChapterRow]:
        return await chapters_crud.list_recent_chapters(self.session, story_id, limit)

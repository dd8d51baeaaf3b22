from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from deepscribe.config.schema import AppConfigRoot
from deepscribe.domain.errors import AuthRequiredError, StoryNotFoundError, StoryValidationError
from deepscribe.domain.protection import Protected, Unprotected
from deepscribe.domain.sequencing import next_chapter_number
from deepscribe.engine.access import AccessGate, Operation
from deepscribe.engine.locks import StoryLockRegistry
from deepscribe.engine.pipeline import GenerationPipeline
from deepscribe.llm.factory import ChatClient
from deepscribe.storage.db import session_scope
from deepscribe.storage.repo import SQLAlchemyRepo
from deepscribe.storage.types import ChapterRow, StoryMetadata, StoryRow, StoryView

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class StoryService:
    """Story operations consumed by the outer surface (CLI or HTTP).

    Every mutation of a story runs under that story's lock. Generation calls
    happen outside any database session so a slow model does not pin a
    connection.
    """

    def __init__(
        self,
        config: AppConfigRoot,
        *,
        content_client: ChatClient | None = None,
        summary_client: ChatClient | None = None,
        session_factory: SessionFactory = session_scope,
        locks: StoryLockRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = _new_id,
    ):
        self.config = config
        self.gate = AccessGate(config.security)
        self.pipeline: GenerationPipeline | None = None
        if content_client is not None:
            self.pipeline = GenerationPipeline(
                config,
                content_client=content_client,
                summary_client=summary_client,
            )
        self.session_factory = session_factory
        self.locks = locks or StoryLockRegistry()
        self.clock = clock
        self.id_factory = id_factory

    async def _load_story(self, repo: SQLAlchemyRepo, story_id: str) -> StoryRow:
        story = await repo.get_story(story_id)
        if story is None:
            raise StoryNotFoundError(story_id)
        return story

    async def create_story(self, title: str, genre: str | None = None, secret: str | None = None) -> StoryMetadata:
        if not title or not title.strip():
            raise StoryValidationError("Story title cannot be blank")
        protection = self.gate.new_protection(secret) if secret is not None else Unprotected()
        story_id = self.id_factory()
        async with self.session_factory() as session:
            story = await SQLAlchemyRepo(session).create_story(
                story_id=story_id,
                title=title.strip(),
                genre=genre.strip() if genre else None,
                password_hash=protection.credential_hash,
                now=self.clock(),
            )
        logger.bind(story_id=story_id, stage="create").info("Created story protected={}", story.is_protected)
        return story.metadata()

    async def list_stories(self) -> list[StoryMetadata]:
        async with self.session_factory() as session:
            stories = await SQLAlchemyRepo(session).list_stories()
        return [story.metadata() for story in stories]

    async def get_story(self, story_id: str, secret: str | None = None) -> StoryView:
        async with self.session_factory() as session:
            repo = SQLAlchemyRepo(session)
            story = await self._load_story(repo, story_id)
            self.gate.require(story, secret, Operation.READ)
            chapters = await repo.list_chapters(story_id)
        return StoryView(metadata=story.metadata(), chapters=chapters)

    async def set_password(
        self,
        story_id: str,
        secret: str,
        current_secret: str | None = None,
    ) -> StoryMetadata:
        log = logger.bind(story_id=story_id, stage="set_password")
        async with self.locks.hold(story_id):
            async with self.session_factory() as session:
                repo = SQLAlchemyRepo(session)
                story = await self._load_story(repo, story_id)
                protection = self.gate.new_protection(secret)
                if isinstance(story.protection, Protected):
                    # Replacing an existing password needs the current one.
                    if not current_secret:
                        raise AuthRequiredError(story.metadata())
                    self.gate.cleared_protection(story, current_secret)
                await repo.set_password_hash(story_id, protection.credential_hash)
                story.protection = protection
        log.info("Story password set")
        return story.metadata()

    async def remove_password(self, story_id: str, secret: str | None) -> StoryMetadata:
        log = logger.bind(story_id=story_id, stage="remove_password")
        async with self.locks.hold(story_id):
            async with self.session_factory() as session:
                repo = SQLAlchemyRepo(session)
                story = await self._load_story(repo, story_id)
                was_protected = story.is_protected
                story.protection = self.gate.cleared_protection(story, secret)
                if was_protected:
                    await repo.set_password_hash(story_id, None)
        log.info("Story password removed was_protected={}", was_protected)
        return story.metadata()

    async def delete_story(self, story_id: str, secret: str | None = None) -> None:
        async with self.locks.hold(story_id):
            async with self.session_factory() as session:
                repo = SQLAlchemyRepo(session)
                story = await self._load_story(repo, story_id)
                self.gate.require(story, secret, Operation.DELETE)
                await repo.delete_story(story_id)
        logger.bind(story_id=story_id, stage="delete").info("Deleted story")

    async def continue_story(self, story_id: str, prompt: str, secret: str | None = None) -> ChapterRow:
        if self.pipeline is None:
            raise RuntimeError("Generation clients are not configured for this service")

        log_context = {"story_id": story_id, "trace_id": uuid4().hex[:12]}
        log = logger.bind(**log_context, stage="continue")
        window = self.config.continuation.context_window

        async with self.locks.hold(story_id):
            async with self.session_factory() as session:
                repo = SQLAlchemyRepo(session)
                story = await self._load_story(repo, story_id)
                self.gate.require(story, secret, Operation.CONTINUE)
                if not prompt or not prompt.strip():
                    raise StoryValidationError("Prompt cannot be blank")
                recent = await repo.list_recent_chapters(story_id, window)

            # Same snapshot drives both the context and the chapter number.
            chapter_number = next_chapter_number(chapter.chapter_number for chapter in recent)
            log_context["chapter_number"] = chapter_number
            log.bind(chapter_number=chapter_number).info("Continuing story context_chapters={}", len(recent))

            outcome = await self.pipeline.run(story, list(reversed(recent)), prompt.strip(), log_context=log_context)

            now = self.clock()
            async with self.session_factory() as session:
                repo = SQLAlchemyRepo(session)
                chapter = await repo.insert_chapter(
                    chapter_id=self.id_factory(),
                    story_id=story_id,
                    chapter_number=chapter_number,
                    content=outcome.content.text,
                    summary=outcome.summary.text,
                    now=now,
                )
                await repo.touch_story(story_id, now)

        log.bind(chapter_number=chapter_number).info(
            "Chapter persisted content_chars={} summary_degraded={} summary_cached={}",
            len(outcome.content.text),
            outcome.summary.degraded,
            outcome.summary.cached,
        )
        return chapter

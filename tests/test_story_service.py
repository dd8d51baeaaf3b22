from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from deepscribe.config.schema import AppConfigRoot
from deepscribe.domain.errors import (
    AuthInvalidError,
    AuthRequiredError,
    GenerationFailedError,
    SecretValidationError,
    StoryNotFoundError,
    StoryValidationError,
)
from deepscribe.engine.service import StoryService
from deepscribe.llm.factory import LLMResponse
from deepscribe.storage.db import DatabaseService
from deepscribe.storage.repo import SQLAlchemyRepo


class _FakeChatClient:
    def __init__(
        self,
        prefix: str,
        *,
        error: Exception | None = None,
        empty: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.model_identifier = f"fake/{prefix}/model"
        self.prefix = prefix
        self.error = error
        self.empty = empty
        self.delay = delay
        self.calls: list[dict] = []

    async def complete_async(self, system_prompt, user_prompt, cache_key=None, *, context=None):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "cache_key": cache_key,
                "context": dict(context or {}),
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.empty:
            return LLMResponse(text="   ", cached=False)
        return LLMResponse(text=f"{self.prefix} {len(self.calls)}", cached=False)


class _Clock:
    def __init__(self) -> None:
        self.current = datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


async def _build(
    tmp_path: Path,
    *,
    content_client: _FakeChatClient | None = None,
    summary_client: _FakeChatClient | None = None,
) -> tuple[DatabaseService, StoryService]:
    db = DatabaseService.for_path(tmp_path / "stories.db")
    await db.init_models()
    service = StoryService(
        AppConfigRoot(),
        content_client=content_client or _FakeChatClient("Content"),
        summary_client=summary_client or _FakeChatClient("Summary"),
        session_factory=db.session_scope,
        clock=_Clock(),
    )
    return db, service


def test_continue_assigns_sequential_chapter_numbers(tmp_path: Path) -> None:
    async def _run() -> None:
        db, service = await _build(tmp_path)
        try:
            story = await service.create_story("The Lighthouse", "mystery")
            numbers = []
            for prompt in ["begin", "storm", "rescue"]:
                chapter = await service.continue_story(story.id, prompt)
                numbers.append(chapter.chapter_number)

            assert numbers == [1, 2, 3]
            view = await service.get_story(story.id)
            assert [chapter.chapter_number for chapter in view.chapters] == [1, 2, 3]
            assert view.chapters[0].content == "Content 1"
            assert view.chapters[0].summary == "Summary 1"
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_first_continuation_sends_header_only_context(tmp_path: Path) -> None:
    async def _run() -> None:
        content_client = _FakeChatClient("Content")
        db, service = await _build(tmp_path, content_client=content_client)
        try:
            story = await service.create_story("The Lighthouse", "mystery")
            await service.continue_story(story.id, "A keeper finds a letter")

            user_prompt = content_client.calls[0]["user_prompt"]
            assert user_prompt.startswith('Story: "The Lighthouse" (mystery)')
            assert "Recent chapters:" not in user_prompt
            assert user_prompt.endswith("Continue the story: A keeper finds a letter")
            assert content_client.calls[0]["cache_key"] is None
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_context_uses_three_most_recent_chapters(tmp_path: Path) -> None:
    async def _run() -> None:
        content_client = _FakeChatClient("Content")
        db, service = await _build(tmp_path, content_client=content_client)
        try:
            story = await service.create_story("The Lighthouse", "mystery")
            for index in range(5):
                await service.continue_story(story.id, f"step {index}")

            chapter = await service.continue_story(story.id, "finale")
            user_prompt = content_client.calls[-1]["user_prompt"]

            assert chapter.chapter_number == 6
            assert "Chapter 1:" not in user_prompt
            assert "Chapter 2:" not in user_prompt
            assert (
                user_prompt.index("Chapter 3: Summary 3")
                < user_prompt.index("Chapter 4: Summary 4")
                < user_prompt.index("Chapter 5: Summary 5")
            )
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_summary_failure_degrades_to_placeholder(tmp_path: Path) -> None:
    async def _run() -> None:
        summary_client = _FakeChatClient("Summary", error=RuntimeError("quota exceeded"))
        db, service = await _build(tmp_path, summary_client=summary_client)
        try:
            story = await service.create_story("The Lighthouse", "mystery")
            chapter = await service.continue_story(story.id, "begin")

            assert chapter.chapter_number == 1
            assert chapter.content == "Content 1"
            assert chapter.summary == "Chapter summary unavailable"
            assert summary_client.calls[0]["user_prompt"] == "Content 1"
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_content_failure_persists_nothing(tmp_path: Path) -> None:
    async def _run() -> None:
        content_client = _FakeChatClient("Content", error=RuntimeError("connection reset"))
        summary_client = _FakeChatClient("Summary")
        db, service = await _build(tmp_path, content_client=content_client, summary_client=summary_client)
        try:
            story = await service.create_story("The Lighthouse", "mystery")
            before = await service.get_story(story.id)
            assert before.metadata == story

            with pytest.raises(GenerationFailedError):
                await service.continue_story(story.id, "begin")

            after = await service.get_story(story.id)
            assert after.chapters == []
            assert after.metadata.updated_at == before.metadata.updated_at
            assert summary_client.calls == []
            assert len(content_client.calls) == 1
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_empty_content_is_generation_failure(tmp_path: Path) -> None:
    async def _run() -> None:
        db, service = await _build(tmp_path, content_client=_FakeChatClient("Content", empty=True))
        try:
            story = await service.create_story("The Lighthouse", "mystery")

            with pytest.raises(GenerationFailedError):
                await service.continue_story(story.id, "begin")

            assert (await service.get_story(story.id)).chapters == []
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_continue_advances_story_timestamp(tmp_path: Path) -> None:
    async def _run() -> None:
        db, service = await _build(tmp_path)
        try:
            story = await service.create_story("The Lighthouse", "mystery")
            before = await service.get_story(story.id)
            await service.continue_story(story.id, "begin")
            after = await service.get_story(story.id)

            assert after.metadata.updated_at > before.metadata.updated_at
            assert after.metadata.created_at == before.metadata.created_at
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_protected_story_read_requires_secret(tmp_path: Path) -> None:
    async def _run() -> None:
        db, service = await _build(tmp_path)
        try:
            story = await service.create_story("The Lighthouse", "mystery", secret="abcd")
            await service.continue_story(story.id, "one", secret="abcd")
            await service.continue_story(story.id, "two", secret="abcd")

            with pytest.raises(AuthRequiredError) as required:
                await service.get_story(story.id)
            assert required.value.metadata.title == "The Lighthouse"
            assert required.value.metadata.is_protected is True

            with pytest.raises(AuthInvalidError):
                await service.get_story(story.id, secret="wrong")

            view = await service.get_story(story.id, secret="abcd")
            assert [chapter.chapter_number for chapter in view.chapters] == [1, 2]
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_protected_story_continue_requires_secret(tmp_path: Path) -> None:
    async def _run() -> None:
        content_client = _FakeChatClient("Content")
        db, service = await _build(tmp_path, content_client=content_client)
        try:
            story = await service.create_story("The Lighthouse", "mystery", secret="abcd")

            with pytest.raises(AuthRequiredError):
                await service.continue_story(story.id, "begin")
            with pytest.raises(AuthInvalidError):
                await service.continue_story(story.id, "begin", secret="nope")

            assert content_client.calls == []
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_set_password_enforces_minimum_length(tmp_path: Path) -> None:
    async def _run() -> None:
        db, service = await _build(tmp_path)
        try:
            story = await service.create_story("The Lighthouse", "mystery")

            with pytest.raises(SecretValidationError):
                await service.set_password(story.id, "abc")
            assert (await service.get_story(story.id)).metadata.is_protected is False

            metadata = await service.set_password(story.id, "abcd")
            assert metadata.is_protected is True
            with pytest.raises(AuthRequiredError):
                await service.get_story(story.id)
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_replacing_password_requires_current_one(tmp_path: Path) -> None:
    async def _run() -> None:
        db, service = await _build(tmp_path)
        try:
            story = await service.create_story("The Lighthouse", "mystery", secret="first")

            with pytest.raises(AuthRequiredError):
                await service.set_password(story.id, "second")
            with pytest.raises(AuthInvalidError):
                await service.set_password(story.id, "second", current_secret="wrong")

            await service.set_password(story.id, "second", current_secret="first")
            with pytest.raises(AuthInvalidError):
                await service.get_story(story.id, secret="first")
            assert (await service.get_story(story.id, secret="second")).metadata.is_protected
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_remove_password_with_wrong_secret_keeps_protection(tmp_path: Path) -> None:
    async def _run() -> None:
        db, service = await _build(tmp_path)
        try:
            story = await service.create_story("The Lighthouse", "mystery", secret="abcd")

            with pytest.raises(AuthInvalidError):
                await service.remove_password(story.id, "wrong")
            with pytest.raises(AuthRequiredError):
                await service.get_story(story.id)

            metadata = await service.remove_password(story.id, "abcd")
            assert metadata.is_protected is False
            view = await service.get_story(story.id)
            assert view.metadata.is_protected is False
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_unknown_story_is_not_found(tmp_path: Path) -> None:
    async def _run() -> None:
        db, service = await _build(tmp_path)
        try:
            with pytest.raises(StoryNotFoundError):
                await service.get_story("missing")
            with pytest.raises(StoryNotFoundError):
                await service.continue_story("missing", "begin")
            with pytest.raises(StoryNotFoundError):
                await service.set_password("missing", "abcd")
            with pytest.raises(StoryNotFoundError):
                await service.remove_password("missing", "abcd")
            with pytest.raises(StoryNotFoundError):
                await service.delete_story("missing")
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_blank_title_and_prompt_are_rejected(tmp_path: Path) -> None:
    async def _run() -> None:
        content_client = _FakeChatClient("Content")
        db, service = await _build(tmp_path, content_client=content_client)
        try:
            with pytest.raises(StoryValidationError):
                await service.create_story("   ", "mystery")

            story = await service.create_story("The Lighthouse", "mystery")
            with pytest.raises(StoryValidationError):
                await service.continue_story(story.id, "  ")
            assert content_client.calls == []
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_concurrent_continuations_get_distinct_numbers(tmp_path: Path) -> None:
    async def _run() -> None:
        content_client = _FakeChatClient("Content", delay=0.02)
        db, service = await _build(tmp_path, content_client=content_client)
        try:
            story = await service.create_story("The Lighthouse", "mystery")

            first, second = await asyncio.gather(
                service.continue_story(story.id, "left"),
                service.continue_story(story.id, "right"),
            )

            assert sorted([first.chapter_number, second.chapter_number]) == [1, 2]
            assert "Chapter 1:" in content_client.calls[1]["user_prompt"]
            view = await service.get_story(story.id)
            assert [chapter.chapter_number for chapter in view.chapters] == [1, 2]
            assert len(service.locks) == 0
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_delete_story_cascades_to_chapters(tmp_path: Path) -> None:
    async def _run() -> None:
        db, service = await _build(tmp_path)
        try:
            story = await service.create_story("The Lighthouse", "mystery", secret="abcd")
            await service.continue_story(story.id, "begin", secret="abcd")

            with pytest.raises(AuthRequiredError):
                await service.delete_story(story.id)

            await service.delete_story(story.id, secret="abcd")

            with pytest.raises(StoryNotFoundError):
                await service.get_story(story.id)
            async with db.session_scope() as session:
                assert await SQLAlchemyRepo(session).list_chapters(story.id) == []
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_list_stories_returns_metadata_newest_first(tmp_path: Path) -> None:
    async def _run() -> None:
        db, service = await _build(tmp_path)
        try:
            older = await service.create_story("Older", "fantasy")
            newer = await service.create_story("Newer", "sci-fi", secret="abcd")
            await service.continue_story(older.id, "bump")

            stories = await service.list_stories()

            assert [story.id for story in stories] == [older.id, newer.id]
            assert stories[1].is_protected is True
            assert not hasattr(stories[1], "chapters")
        finally:
            await db.dispose()

    asyncio.run(_run())


def test_short_replacement_password_is_a_validation_error(tmp_path: Path) -> None:
    async def _run() -> None:
        db, service = await _build(tmp_path)
        try:
            story = await service.create_story("The Lighthouse", "mystery", secret="first")

            with pytest.raises(SecretValidationError):
                await service.set_password(story.id, "abc")
            with pytest.raises(SecretValidationError):
                await service.set_password(story.id, "abc", current_secret="wrong")

            assert (await service.get_story(story.id, secret="first")).metadata.is_protected
        finally:
            await db.dispose()

    asyncio.run(_run())

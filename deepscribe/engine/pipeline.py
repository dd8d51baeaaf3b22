from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from loguru import logger

from deepscribe.config.schema import AppConfigRoot
from deepscribe.domain.context import build_context
from deepscribe.domain.errors import GenerationFailedError
from deepscribe.domain.hashing import summary_cache_key
from deepscribe.llm.factory import ChatClient
from deepscribe.llm.prompts import SUMMARY_PROMPT_VERSION, continuation_prompts, summary_prompts
from deepscribe.storage.types import ChapterRow, StoryRow


@dataclass(frozen=True)
class ContentStage:
    """Fatal stage: failure aborts the continuation."""

    text: str
    model: str


@dataclass(frozen=True)
class SummaryStage:
    """Recoverable stage: failure degrades to the configured placeholder."""

    text: str
    degraded: bool
    cached: bool = False
    error: str | None = None


@dataclass(frozen=True)
class GenerationOutcome:
    context: str
    content: ContentStage
    summary: SummaryStage


class GenerationPipeline:
    def __init__(
        self,
        config: AppConfigRoot,
        *,
        content_client: ChatClient,
        summary_client: ChatClient | None = None,
    ):
        self.config = config
        self.content_client = content_client
        self.summary_client = summary_client or content_client

    def assemble_context(self, story: StoryRow, recent_chapters: Sequence[ChapterRow]) -> str:
        settings = self.config.continuation
        return build_context(
            story.title,
            story.genre,
            recent_chapters,
            window=settings.context_window,
            excerpt_chars=settings.excerpt_chars,
        )

    async def generate_content(
        self,
        context: str,
        prompt: str,
        *,
        log_context: Mapping[str, Any] | None = None,
    ) -> ContentStage:
        system_prompt, user_prompt = continuation_prompts(
            system_prompt=self.config.continuation.content_system_prompt,
            context=context,
            prompt=prompt,
        )
        try:
            response = await self.content_client.complete_async(
                system_prompt,
                user_prompt,
                None,
                context=log_context,
            )
        except Exception as exc:  # noqa: BLE001
            logger.bind(**dict(log_context or {})).exception("Content generation failed")
            raise GenerationFailedError("Failed to generate story content") from exc

        text = (response.text or "").strip()
        if not text:
            raise GenerationFailedError("Generation service returned no usable content")
        return ContentStage(text=text, model=self.content_client.model_identifier)

    async def summarize(
        self,
        content: str,
        *,
        log_context: Mapping[str, Any] | None = None,
    ) -> SummaryStage:
        placeholder = self.config.continuation.summary_placeholder
        system_prompt, user_prompt = summary_prompts(
            system_prompt=self.config.continuation.summary_system_prompt,
            content=content,
        )
        cache_key = summary_cache_key(self.summary_client.model_identifier, SUMMARY_PROMPT_VERSION, content)
        try:
            response = await self.summary_client.complete_async(
                system_prompt,
                user_prompt,
                cache_key,
                context=log_context,
            )
        except Exception as exc:  # noqa: BLE001
            logger.bind(**dict(log_context or {})).warning(
                "Summary generation failed, using placeholder error_type={} error={}",
                type(exc).__name__,
                exc,
            )
            return SummaryStage(text=placeholder, degraded=True, error=str(exc) or type(exc).__name__)

        text = (response.text or "").strip()
        if not text:
            logger.bind(**dict(log_context or {})).warning("Summary generation returned empty text, using placeholder")
            return SummaryStage(text=placeholder, degraded=True, error="empty summary")
        return SummaryStage(text=text, degraded=False, cached=response.cached)

    async def run(
        self,
        story: StoryRow,
        recent_chapters: Sequence[ChapterRow],
        prompt: str,
        *,
        log_context: Mapping[str, Any] | None = None,
    ) -> GenerationOutcome:
        context = self.assemble_context(story, recent_chapters)
        content = await self.generate_content(
            context,
            prompt,
            log_context={**dict(log_context or {}), "stage": "content"},
        )
        summary = await self.summarize(
            content.text,
            log_context={**dict(log_context or {}), "stage": "summary"},
        )
        return GenerationOutcome(context=context, content=content, summary=summary)

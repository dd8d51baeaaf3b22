from __future__ import annotations

import asyncio
from dataclasses import dataclass
import os
import time
from typing import Any, Literal, Mapping, Protocol

from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage
from loguru import logger

from deepscribe.config.schema import AppConfigRoot
from deepscribe.domain.errors import ConfigurationError
from deepscribe.llm.cache import SummaryCache

ChatRoute = Literal["continuation", "summary"]


@dataclass
class LLMResponse:
    text: str
    cached: bool


@dataclass(frozen=True)
class ResolvedChatRuntime:
    route: str
    endpoint_name: str
    provider_name: str
    model: str
    temperature: float
    max_tokens: int | None
    timeout_s: int
    max_concurrency: int
    retries: int
    base_url: str | None
    api_key_env: str | None
    api_key: str | None


class ChatClient(Protocol):
    """Generation collaborator contract used by the continuation pipeline."""

    model_identifier: str

    async def complete_async(
        self,
        system_prompt: str,
        user_prompt: str,
        cache_key: str | None = None,
        *,
        context: Mapping[str, Any] | None = None,
    ) -> LLMResponse: ...


def _short_key(value: str | None, length: int = 12) -> str:
    if not value:
        return "-"
    return value[:length]


def resolve_chat_runtime(config: AppConfigRoot, route: ChatRoute) -> ResolvedChatRuntime:
    endpoint_name, endpoint, provider = config.llm.resolve_chat_route(route)
    api_key = None
    if provider.api_key_env:
        api_key = os.getenv(provider.api_key_env)
        if not api_key:
            raise ConfigurationError(
                f"Missing required API key env for route '{route}': {provider.api_key_env}"
            )

    return ResolvedChatRuntime(
        route=route,
        endpoint_name=endpoint_name,
        provider_name=endpoint.provider,
        model=endpoint.model,
        temperature=endpoint.temperature,
        max_tokens=endpoint.max_tokens,
        timeout_s=endpoint.timeout_s,
        max_concurrency=endpoint.max_concurrency,
        retries=endpoint.retries,
        base_url=provider.base_url,
        api_key_env=provider.api_key_env,
        api_key=api_key,
    )


def _build_chat_model(runtime: ResolvedChatRuntime) -> ChatOpenAI:
    kwargs: dict[str, Any] = {
        "model": runtime.model,
        "temperature": runtime.temperature,
        "timeout": runtime.timeout_s,
        # Attempts are counted by OpenAIChatClient only.
        "max_retries": 0,
    }

    if runtime.max_tokens is not None:
        kwargs["max_tokens"] = runtime.max_tokens
    if runtime.base_url:
        kwargs["base_url"] = runtime.base_url
    if runtime.api_key:
        kwargs["api_key"] = runtime.api_key

    return ChatOpenAI(**kwargs)


class OpenAIChatClient:
    def __init__(
        self,
        config: AppConfigRoot,
        cache: SummaryCache | None = None,
        route: ChatRoute = "continuation",
    ):
        self.config = config
        self.cache = cache
        self.runtime = resolve_chat_runtime(config, route)
        self.model = _build_chat_model(self.runtime)
        self.model_identifier = f"{self.runtime.provider_name}/{self.runtime.endpoint_name}/{self.runtime.model}"
        self._async_semaphore = asyncio.Semaphore(max(1, self.runtime.max_concurrency))

    def _build_log_context(
        self,
        *,
        cache_key: str | None = None,
        attempt: int | None = None,
        attempts_total: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        merged: dict[str, Any] = {
            "route": self.runtime.route,
            "provider": self.runtime.provider_name,
            "endpoint": self.runtime.endpoint_name,
            "model": self.runtime.model,
        }
        if context:
            for key, value in context.items():
                if value is not None:
                    merged[key] = value
        if cache_key:
            merged["cache_key"] = _short_key(cache_key)
        if attempt is not None and attempts_total is not None:
            merged["attempt"] = f"{attempt}/{attempts_total}"
        return merged

    def _prompt_excerpt(self, prompt: str) -> str | None:
        max_chars = int(self.config.observability.log_prompt_chars)
        if max_chars <= 0:
            return None
        if len(prompt) <= max_chars:
            return prompt
        return f"{prompt[:max_chars]}...[truncated {len(prompt) - max_chars} chars]"

    def _cache_lookup(self, cache_key: str | None) -> str | None:
        if self.cache is None or not cache_key:
            return None
        cached = self.cache.get(cache_key)
        if cached.hit and cached.value is not None:
            return cached.value
        return None

    def _cache_store(self, cache_key: str | None, text: str) -> None:
        if self.cache is None or not cache_key:
            return
        self.cache.set(cache_key, text)

    async def complete_async(
        self,
        system_prompt: str,
        user_prompt: str,
        cache_key: str | None = None,
        *,
        context: Mapping[str, Any] | None = None,
    ) -> LLMResponse:
        cached = self._cache_lookup(cache_key)
        if cached is not None:
            return LLMResponse(text=cached, cached=True)

        text = await self._invoke_with_retry(system_prompt, user_prompt, cache_key=cache_key, context=context)
        self._cache_store(cache_key, text)
        return LLMResponse(text=text, cached=False)

    async def _invoke_on_worker(self, fn, *args: Any) -> Any:
        async with self._async_semaphore:
            return await asyncio.to_thread(fn, *args)

    @staticmethod
    def _response_text(response: Any) -> str:
        text = str(getattr(response, "content", "") or "").strip()
        if not text:
            raise ValueError("Empty LLM response")
        return text

    def _log_failure(
        self,
        exc: Exception,
        *,
        attempt: int,
        attempts: int,
        started: float,
        cache_key: str | None,
        context: Mapping[str, Any] | None,
    ) -> None:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        log = logger.bind(
            **self._build_log_context(
                cache_key=cache_key,
                attempt=attempt + 1,
                attempts_total=attempts,
                context=context,
            )
        )
        if self.config.observability.log_retry_attempts:
            log.warning(
                "LLM call failed elapsed_ms={} error_type={} error={}",
                elapsed_ms,
                type(exc).__name__,
                exc,
            )
        if attempt == attempts - 1:
            log.error("LLM call failed on final attempt")

    async def _invoke_with_retry(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        cache_key: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> str:
        attempts = max(1, self.runtime.retries + 1)
        last_exc: Exception | None = None
        messages = [SystemMessage(system_prompt), HumanMessage(user_prompt)]

        excerpt = self._prompt_excerpt(user_prompt)
        if excerpt is not None:
            logger.bind(**self._build_log_context(context=context)).debug("LLM user prompt={}", excerpt)

        for attempt in range(attempts):
            attempt_started = time.perf_counter()
            try:
                response = await self._invoke_on_worker(self.model.invoke, messages)
                return self._response_text(response)
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                self._log_failure(
                    exc,
                    attempt=attempt,
                    attempts=attempts,
                    started=attempt_started,
                    cache_key=cache_key,
                    context=context,
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(min(0.5 * (2**attempt), 4.0))

        raise RuntimeError("LLM call failed after retries") from last_exc


def build_chat_clients(config: AppConfigRoot, cache: SummaryCache | None = None) -> tuple[OpenAIChatClient, OpenAIChatClient]:
    """Returns (continuation_client, summary_client). Only the summary client is cached."""

    continuation_client = OpenAIChatClient(config=config, cache=None, route="continuation")
    summary_client = OpenAIChatClient(config=config, cache=cache, route="summary")
    return continuation_client, summary_client

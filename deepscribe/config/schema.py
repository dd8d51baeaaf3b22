from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


DEFAULT_CONTENT_SYSTEM_PROMPT = (
    "You are a creative fiction writer. Write engaging, descriptive stories with rich characters "
    "and immersive settings. Keep responses focused on storytelling without meta-commentary."
)
DEFAULT_SUMMARY_SYSTEM_PROMPT = (
    "Summarize the following chapter in 2-3 sentences, focusing on key plot points and character developments."
)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data_dir: Path = Field(default=Path("./data"))
    log_level: str = Field(default="INFO")


class LLMProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["openai_compatible"] = "openai_compatible"
    base_url: str | None = None
    api_key_env: str | None = None


class ChatEndpointConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: str
    model: str
    temperature: float = 0.3
    timeout_s: int = 60
    max_concurrency: int = 6
    retries: int = 0
    max_tokens: int | None = None

    @field_validator("temperature")
    @classmethod
    def _temperature_range(cls, value: float) -> float:
        if not 0 <= value <= 2:
            raise ValueError("temperature must be between 0 and 2")
        return value

    @field_validator("timeout_s", "max_concurrency", "retries")
    @classmethod
    def _non_negative_int(cls, value: int) -> int:
        if value < 0:
            raise ValueError("endpoint integer settings must be non-negative")
        return value

    @field_validator("max_tokens")
    @classmethod
    def _positive_optional_max_tokens(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("max_tokens must be positive when provided")
        return value


class LLMRoutesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    continuation_chat: str = "continuation_default"
    summary_chat: str | None = None


class LLMConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    providers: dict[str, LLMProviderConfig]
    chat_endpoints: dict[str, ChatEndpointConfig]
    routes: LLMRoutesConfig = LLMRoutesConfig()

    @model_validator(mode="after")
    def _validate_references(self) -> "LLMConfig":
        if not self.providers:
            raise ValueError("llm.providers cannot be empty")
        if not self.chat_endpoints:
            raise ValueError("llm.chat_endpoints cannot be empty")

        for endpoint_name, endpoint in self.chat_endpoints.items():
            if endpoint.provider not in self.providers:
                raise ValueError(
                    f"chat endpoint '{endpoint_name}' references unknown provider '{endpoint.provider}'"
                )

        if self.routes.continuation_chat not in self.chat_endpoints:
            raise ValueError(f"llm.routes.continuation_chat not found: {self.routes.continuation_chat}")
        if self.routes.summary_chat and self.routes.summary_chat not in self.chat_endpoints:
            raise ValueError(f"llm.routes.summary_chat not found: {self.routes.summary_chat}")

        return self

    def resolve_chat_route(
        self,
        route: Literal["continuation", "summary"],
    ) -> tuple[str, ChatEndpointConfig, LLMProviderConfig]:
        if route == "summary":
            endpoint_name = self.routes.summary_chat or self.routes.continuation_chat
        else:
            endpoint_name = self.routes.continuation_chat

        endpoint = self.chat_endpoints[endpoint_name]
        provider = self.providers[endpoint.provider]
        return endpoint_name, endpoint, provider


class ContinuationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    context_window: int = 3
    excerpt_chars: int = 200
    summary_placeholder: str = "Chapter summary unavailable"
    content_system_prompt: str = DEFAULT_CONTENT_SYSTEM_PROMPT
    summary_system_prompt: str = DEFAULT_SUMMARY_SYSTEM_PROMPT

    @field_validator("context_window", "excerpt_chars")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("continuation integer settings must be positive")
        return value

    @field_validator("summary_placeholder")
    @classmethod
    def _non_blank_placeholder(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("summary_placeholder cannot be blank")
        return value


class SecurityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min_password_length: int = 4
    salt_bytes: int = 16
    key_length: int = 64

    @field_validator("min_password_length", "salt_bytes", "key_length")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("security integer settings must be positive")
        return value


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sqlite_path: Path = Field(default=Path("./data/stories.db"))


class CacheConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    backend: str = "sqlite"
    ttl_seconds: int = 2_592_000


class ObservabilityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_retry_attempts: bool = True
    log_prompt_chars: int = 0

    @field_validator("log_prompt_chars")
    @classmethod
    def _non_negative_chars(cls, value: int) -> int:
        if value < 0:
            raise ValueError("log_prompt_chars must be non-negative")
        return value


def default_llm_config() -> LLMConfig:
    return LLMConfig.model_validate(
        {
            "providers": {
                "deepseek": {
                    "kind": "openai_compatible",
                    "base_url": "https://api.deepseek.com/v1",
                    "api_key_env": "DEEPSEEK_API_KEY",
                }
            },
            "chat_endpoints": {
                "continuation_default": {
                    "provider": "deepseek",
                    "model": "deepseek-chat",
                    "temperature": 0.8,
                    "max_tokens": 2000,
                    "timeout_s": 120,
                    "max_concurrency": 4,
                    "retries": 0,
                },
                "summary_default": {
                    "provider": "deepseek",
                    "model": "deepseek-chat",
                    "temperature": 0.3,
                    "max_tokens": 200,
                    "timeout_s": 60,
                    "max_concurrency": 4,
                    "retries": 0,
                },
            },
            "routes": {
                "continuation_chat": "continuation_default",
                "summary_chat": "summary_default",
            },
        }
    )


class AppConfigRoot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    app: AppConfig = AppConfig()
    llm: LLMConfig = Field(default_factory=default_llm_config)
    continuation: ContinuationConfig = ContinuationConfig()
    security: SecurityConfig = SecurityConfig()
    storage: StorageConfig = StorageConfig()
    cache: CacheConfig = CacheConfig()
    observability: ObservabilityConfig = ObservabilityConfig()


def resolve_paths(config: AppConfigRoot, base_dir: Path) -> AppConfigRoot:
    def _resolve(path_value: Path) -> Path:
        return path_value if path_value.is_absolute() else (base_dir / path_value).resolve()

    config.app.data_dir = _resolve(config.app.data_dir)
    config.storage.sqlite_path = _resolve(config.storage.sqlite_path)
    return config

"""Error taxonomy shared by the engine, storage and CLI layers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deepscribe.storage.types import StoryMetadata


class DeepScribeError(Exception):
    code = "internal_error"


class StoryNotFoundError(DeepScribeError):
    code = "not_found"

    def __init__(self, story_id: str):
        super().__init__(f"Story not found: {story_id}")
        self.story_id = story_id


class AccessDeniedError(DeepScribeError):
    """Base for gate denials. Carries only the story's public metadata."""

    code = "access_denied"

    def __init__(self, message: str, metadata: "StoryMetadata"):
        super().__init__(message)
        self.metadata = metadata


class AuthRequiredError(AccessDeniedError):
    code = "auth_required"

    def __init__(self, metadata: "StoryMetadata"):
        super().__init__("Password required", metadata)


class AuthInvalidError(AccessDeniedError):
    code = "auth_invalid"

    def __init__(self, metadata: "StoryMetadata"):
        super().__init__("Incorrect password", metadata)


class InputValidationError(DeepScribeError):
    code = "validation_error"


class SecretValidationError(InputValidationError):
    pass


class StoryValidationError(InputValidationError):
    pass


class GenerationFailedError(DeepScribeError):
    code = "generation_failed"


class StorageError(DeepScribeError):
    code = "internal_error"


class ConfigurationError(DeepScribeError, ValueError):
    """Settings or environment that make an operation impossible to start."""

    code = "config_error"

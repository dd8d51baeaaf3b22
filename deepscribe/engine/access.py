from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from deepscribe.config.schema import SecurityConfig
from deepscribe.domain.credentials import hash_secret, verify_secret
from deepscribe.domain.errors import AuthInvalidError, AuthRequiredError, SecretValidationError
from deepscribe.domain.protection import UNPROTECTED, Protected, Protection, Unprotected
from deepscribe.storage.types import StoryRow


class Operation(str, Enum):
    READ = "read"
    CONTINUE = "continue"
    DELETE = "delete"


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    reason: Literal["unprotected", "verified", "auth_required", "auth_invalid"]


class AccessGate:
    """Per-request password check for a single story. No sessions, no tokens."""

    def __init__(self, security: SecurityConfig | None = None):
        self.security = security or SecurityConfig()

    def verify(self, secret: str | None, protection: Protection) -> bool:
        if isinstance(protection, Unprotected):
            return False
        return verify_secret(secret, protection.credential_hash)

    def evaluate(self, story: StoryRow, secret: str | None, operation: Operation) -> AccessDecision:
        _ = operation
        protection = story.protection
        if isinstance(protection, Unprotected):
            return AccessDecision(granted=True, reason="unprotected")
        if not secret:
            return AccessDecision(granted=False, reason="auth_required")
        if self.verify(secret, protection):
            return AccessDecision(granted=True, reason="verified")
        return AccessDecision(granted=False, reason="auth_invalid")

    def require(self, story: StoryRow, secret: str | None, operation: Operation) -> None:
        decision = self.evaluate(story, secret, operation)
        if decision.granted:
            return
        if decision.reason == "auth_required":
            raise AuthRequiredError(story.metadata())
        raise AuthInvalidError(story.metadata())

    def new_protection(self, secret: str | None) -> Protected:
        if secret is None or len(secret) < self.security.min_password_length:
            raise SecretValidationError(
                f"Password must be at least {self.security.min_password_length} characters"
            )
        return Protected(
            hash_secret(
                secret,
                salt_bytes=self.security.salt_bytes,
                key_length=self.security.key_length,
            )
        )

    def cleared_protection(self, story: StoryRow, current_secret: str | None) -> Unprotected:
        protection = story.protection
        if isinstance(protection, Unprotected):
            return UNPROTECTED
        if not self.verify(current_secret, protection):
            raise AuthInvalidError(story.metadata())
        return UNPROTECTED

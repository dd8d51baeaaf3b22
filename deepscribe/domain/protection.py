from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Unprotected:
    @property
    def credential_hash(self) -> None:
        return None


@dataclass(frozen=True)
class Protected:
    credential_hash: str

    def __post_init__(self) -> None:
        if not self.credential_hash:
            raise ValueError("Protected requires a non-empty credential hash")


Protection = Union[Unprotected, Protected]

UNPROTECTED = Unprotected()


def protection_from_hash(credential_hash: str | None) -> Protection:
    if credential_hash:
        return Protected(credential_hash)
    return UNPROTECTED


def is_protected(protection: Protection) -> bool:
    return isinstance(protection, Protected)

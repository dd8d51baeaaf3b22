"""Story storage models and CRUD helpers."""

from deepscribe.storage.stories.base import Story
from deepscribe.storage.stories import crud

__all__ = ["Story", "crud"]

"""Chapter storage models and CRUD helpers."""

from deepscribe.storage.chapters.base import Chapter
from deepscribe.storage.chapters import crud

__all__ = ["Chapter", "crud"]

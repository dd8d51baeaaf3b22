"""Storage layer for SQLite via SQLAlchemy async."""

from deepscribe.storage import chapters, stories

__all__ = ["chapters", "stories"]

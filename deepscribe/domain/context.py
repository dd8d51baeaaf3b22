from __future__ import annotations

from typing import Iterable, Protocol, Sequence

DEFAULT_CONTEXT_WINDOW = 3
DEFAULT_EXCERPT_CHARS = 200
ELLIPSIS = "..."


class ChapterLike(Protocol):
    chapter_number: int
    content: str
    summary: str | None


def select_recent(chapters: Iterable[ChapterLike], window: int = DEFAULT_CONTEXT_WINDOW) -> list[ChapterLike]:
    """Returns the newest ``window`` chapters, oldest first."""

    if window <= 0:
        return []
    ordered = sorted(chapters, key=lambda chapter: int(chapter.chapter_number))
    return ordered[-window:]


def chapter_digest(chapter: ChapterLike, excerpt_chars: int = DEFAULT_EXCERPT_CHARS) -> str:
    if chapter.summary:
        return chapter.summary
    return f"{chapter.content[:excerpt_chars]}{ELLIPSIS}"


def build_context(
    title: str,
    genre: str | None,
    chapters: Sequence[ChapterLike],
    *,
    window: int = DEFAULT_CONTEXT_WINDOW,
    excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
) -> str:
    header = f'Story: "{title}" ({genre or "unspecified"})\n\n'
    selected = select_recent(chapters, window)
    if not selected:
        return header

    lines = [header, "Recent chapters:\n"]
    for chapter in selected:
        lines.append(f"Chapter {chapter.chapter_number}: {chapter_digest(chapter, excerpt_chars)}\n\n")
    return "".join(lines)

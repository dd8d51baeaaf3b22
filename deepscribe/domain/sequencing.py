from __future__ import annotations

from typing import Iterable


def next_chapter_number(existing_numbers: Iterable[int]) -> int:
    numbers = [int(number) for number in existing_numbers]
    if not numbers:
        return 1
    return max(numbers) + 1

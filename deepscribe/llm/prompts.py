from __future__ import annotations

SUMMARY_PROMPT_VERSION = "v1"


def continuation_prompts(*, system_prompt: str, context: str, prompt: str) -> tuple[str, str]:
    if context.strip():
        user = f"{context}\n\nContinue the story: {prompt}"
    else:
        user = prompt
    return system_prompt, user


def summary_prompts(*, system_prompt: str, content: str) -> tuple[str, str]:
    return system_prompt, content

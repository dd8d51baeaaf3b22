from __future__ import annotations

import hashlib


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def summary_cache_key(model_identifier: str, prompt_version: str, content: str) -> str:
    return sha256_text(f"summary::{model_identifier}::{prompt_version}::{content}")

from __future__ import annotations

import argparse
import asyncio
from dataclasses import asdict
from pathlib import Path
import sys
from typing import Any

import orjson
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from loguru import logger

from deepscribe.config import load_config
from deepscribe.config.loader import masked_env_snapshot
from deepscribe.domain.errors import AccessDeniedError, DeepScribeError
from deepscribe.engine.service import StoryService
from deepscribe.llm.cache import SummaryCache
from deepscribe.llm.factory import build_chat_clients
from deepscribe.storage.db import init_db_service, shutdown_db_service
from deepscribe.storage.types import ChapterRow, StoryMetadata, StoryView
from deepscribe.utils.logging import setup_logging

console = Console()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deepscribe")
    parser.add_argument("--config", type=Path, default=None, help="Path to custom config YAML")
    parser.add_argument("--data-dir", type=Path, default=None, help="Override data directory")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("config", help="Validate and print effective config")

    create_parser = subparsers.add_parser("create", help="Create a new story")
    create_parser.add_argument("--title", type=str, required=True, help="Story title")
    create_parser.add_argument("--genre", type=str, default=None, help="Story genre")
    create_parser.add_argument("--password", type=str, default=None, help="Protect the story with a password")

    subparsers.add_parser("list", help="List stories, most recently updated first")

    show_parser = subparsers.add_parser("show", help="Show a story and its chapters")
    show_parser.add_argument("--story-id", type=str, required=True, help="Story id")
    show_parser.add_argument("--password", type=str, default=None, help="Story password")

    continue_parser = subparsers.add_parser("continue", help="Generate the next chapter")
    continue_parser.add_argument("--story-id", type=str, required=True, help="Story id")
    continue_parser.add_argument("--prompt", type=str, required=True, help="What should happen next")
    continue_parser.add_argument("--password", type=str, default=None, help="Story password")

    set_password_parser = subparsers.add_parser("set-password", help="Protect a story with a password")
    set_password_parser.add_argument("--story-id", type=str, required=True, help="Story id")
    set_password_parser.add_argument("--password", type=str, required=True, help="New password")
    set_password_parser.add_argument(
        "--current-password",
        type=str,
        default=None,
        help="Current password (required when replacing one)",
    )

    remove_password_parser = subparsers.add_parser("remove-password", help="Remove a story's password")
    remove_password_parser.add_argument("--story-id", type=str, required=True, help="Story id")
    remove_password_parser.add_argument("--password", type=str, required=True, help="Current password")

    delete_parser = subparsers.add_parser("delete", help="Delete a story and its chapters")
    delete_parser.add_argument("--story-id", type=str, required=True, help="Story id")
    delete_parser.add_argument("--password", type=str, default=None, help="Story password")

    return parser


def _build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.data_dir:
        overrides["app"] = {"data_dir": str(args.data_dir)}
    return overrides


def _print_config(config) -> None:
    env_snapshot = masked_env_snapshot(config)
    console.print(Panel(Pretty(config.model_dump(mode="json")), title="Effective Config"))
    console.print(Panel(Pretty(env_snapshot), title="Env Snapshot"))


def _dump_json(payload: Any) -> None:
    console.print(
        orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode("utf-8"),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def _metadata_table(stories: list[StoryMetadata], title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Genre")
    table.add_column("Protected")
    table.add_column("Updated")
    for story in stories:
        table.add_row(
            story.id,
            escape(story.title),
            escape(story.genre or "-"),
            "yes" if story.is_protected else "no",
            story.updated_at.isoformat(sep=" ", timespec="seconds"),
        )
    return table


def _print_chapter(chapter: ChapterRow) -> None:
    console.print(
        Panel(
            f"{escape(chapter.content)}\n\n[dim]Summary: {escape(chapter.summary or '-')}[/dim]",
            title=f"Chapter {chapter.chapter_number}",
        )
    )


def _print_story(view: StoryView) -> None:
    console.print(_metadata_table([view.metadata], title="Story"))
    if not view.chapters:
        console.print(Panel("No chapters yet.", title="Chapters"))
        return
    for chapter in view.chapters:
        _print_chapter(chapter)


def _print_error(exc: DeepScribeError) -> None:
    body = escape(f"[{exc.code}] {exc}")
    if isinstance(exc, AccessDeniedError):
        metadata = exc.metadata
        body += escape(f"\nStory: {metadata.title} ({metadata.genre or '-'}) id={metadata.id}")
    console.print(Panel(body, title="Error", style="red"))


def _build_service(config, command: str) -> tuple[StoryService, SummaryCache | None]:
    if command != "continue":
        return StoryService(config), None

    cache = SummaryCache(
        enabled=config.cache.enabled,
        backend=config.cache.backend,
        base_dir=config.app.data_dir,
        ttl_seconds=config.cache.ttl_seconds,
    )
    content_client, summary_client = build_chat_clients(config, cache)
    return StoryService(config, content_client=content_client, summary_client=summary_client), cache


async def _run_command(args: argparse.Namespace, service: StoryService) -> None:
    if args.command == "create":
        story = await service.create_story(args.title, genre=args.genre, secret=args.password)
        if args.json:
            _dump_json(asdict(story))
        else:
            console.print(_metadata_table([story], title="Created Story"))
        return

    if args.command == "list":
        stories = await service.list_stories()
        if args.json:
            _dump_json([asdict(story) for story in stories])
        else:
            console.print(_metadata_table(stories, title="Stories"))
        return

    if args.command == "show":
        view = await service.get_story(args.story_id, secret=args.password)
        if args.json:
            _dump_json(asdict(view))
        else:
            _print_story(view)
        return

    if args.command == "continue":
        chapter = await service.continue_story(args.story_id, args.prompt, secret=args.password)
        if args.json:
            _dump_json(asdict(chapter))
        else:
            _print_chapter(chapter)
        return

    if args.command == "set-password":
        story = await service.set_password(args.story_id, args.password, current_secret=args.current_password)
        console.print(Panel(f"Story {story.id} is now password protected.", title="Password"))
        return

    if args.command == "remove-password":
        story = await service.remove_password(args.story_id, args.password)
        console.print(Panel(f"Story {story.id} is no longer password protected.", title="Password"))
        return

    if args.command == "delete":
        await service.delete_story(args.story_id, secret=args.password)
        console.print(Panel(f"Story {args.story_id} deleted.", title="Delete"))
        return

    raise ValueError(f"Unsupported command: {args.command}")


async def _main_async(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = load_config(
        config_path=args.config,
        overrides=_build_overrides(args),
    )

    setup_logging(config.app.log_level)
    logger.info("Loaded configuration")

    if args.command == "config":
        _print_config(config)
        return 0

    await init_db_service(config.storage.sqlite_path)
    cache: SummaryCache | None = None
    try:
        service, cache = _build_service(config, args.command)
        await _run_command(args, service)
        return 0
    except DeepScribeError as exc:
        _print_error(exc)
        return 1
    finally:
        if cache is not None:
            cache.close()
        await shutdown_db_service()


def main() -> None:
    sys.exit(asyncio.run(_main_async()))


if __name__ == "__main__":
    main()

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from rich.console import Console

from .bootstrap import Services, create_services
from .core.config import Settings, get_settings
from .core.db import Base, lifespan
from .core.errors import VideoCoreError
from .core.logging import configure_logging
from .db.models import VideoChannel, VideoPrivacy
from .domain.descriptors import Requester, UploadedFile
from .ingest.artifacts import ThumbnailUploads
from .schemas import VideoCreate, VideoImportCreate

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    settings = get_settings()
    configure_logging(getattr(logging, settings.log_level.upper(), logging.INFO))
    try:
        asyncio.run(args.func(args, settings))
    except VideoCoreError as exc:
        console.print(f"[red]{exc.code}:[/] {exc}")
        sys.exit(2)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="videocore ingestion developer CLI")
    subparsers = parser.add_subparsers(dest="command")

    init_parser = subparsers.add_parser("init-db", help="Create the schema and optionally a channel")
    init_parser.add_argument("--channel", help="Name of a channel to create")
    init_parser.set_defaults(func=_cmd_init_db)

    add_parser = subparsers.add_parser("add", help="Add a local media file as a new video")
    add_parser.add_argument("--file", required=True, help="Path to the media file (it is moved into storage)")
    add_parser.add_argument("--name", required=True)
    add_parser.add_argument("--channel-id", type=int, required=True)
    add_parser.add_argument("--privacy", choices=[p.name for p in VideoPrivacy], default="public")
    add_parser.add_argument("--tag", action="append", dest="tags", help="Tag, may be repeated")
    add_parser.add_argument("--thumbnail", help="Image to use as miniature")
    add_parser.add_argument("--preview", help="Image to use as preview")
    add_parser.add_argument("--user-id", type=int, default=1)
    add_parser.set_defaults(func=_cmd_add)

    import_parser = subparsers.add_parser("import", help="Create an import from a URL, magnet or torrent file")
    import_parser.add_argument("--url", help="Remote URL handled by the extractor")
    import_parser.add_argument("--magnet", help="Magnet URI")
    import_parser.add_argument("--torrent", help="Path to a .torrent file")
    import_parser.add_argument("--name", help="Override the inferred video name")
    import_parser.add_argument("--channel-id", type=int, required=True)
    import_parser.add_argument("--privacy", choices=[p.name for p in VideoPrivacy])
    import_parser.add_argument("--user-id", type=int, default=1)
    import_parser.set_defaults(func=_cmd_import)

    view_parser = subparsers.add_parser("view", help="Record a view")
    view_parser.add_argument("--video-id", type=int, required=True)
    view_parser.add_argument("--viewer", required=True, help="Viewer key, usually the client IP")
    view_parser.set_defaults(func=_cmd_view)
    return parser


async def _with_services(settings: Settings, fn: Callable[[Services], Awaitable[Any]]) -> Any:
    async with lifespan(settings) as state:
        session_factory = state["session_factory"]
        services = create_services(settings, session_factory)
        try:
            return await fn(services)
        finally:
            await services.runner.drain()


async def _cmd_init_db(args: argparse.Namespace, settings: Settings) -> None:
    async with lifespan(settings) as state:
        async with state["engine"].begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        console.print("[green]Schema ready[/]")
        if args.channel:
            async with state["session_factory"]() as session:
                async with session.begin():
                    channel = VideoChannel(name=args.channel)
                    session.add(channel)
                    await session.flush()
                    console.print_json(data={"channel_id": channel.id, "name": channel.name})


async def _cmd_add(args: argparse.Namespace, settings: Settings) -> None:
    path = Path(args.file).expanduser().resolve()
    if not path.exists():
        console.print(f"[red]File not found: {path}[/]")
        sys.exit(2)

    upload = UploadedFile(path=path, filename=path.name, size=path.stat().st_size)
    info = VideoCreate(name=args.name, privacy=VideoPrivacy[args.privacy], tags=args.tags)
    uploads = ThumbnailUploads(
        thumbnailfile=Path(args.thumbnail) if args.thumbnail else None,
        previewfile=Path(args.preview) if args.preview else None,
    )

    async def run(services: Services) -> None:
        ref = await services.coordinator.add_video(
            upload, info, args.channel_id, Requester(user_id=args.user_id), uploads
        )
        console.print_json(data={"id": ref.id, "uuid": ref.uuid})

    await _with_services(settings, run)


async def _cmd_import(args: argparse.Namespace, settings: Settings) -> None:
    torrent_file = None
    if args.torrent:
        torrent_path = Path(args.torrent).expanduser().resolve()
        torrent_file = UploadedFile(path=torrent_path, filename=torrent_path.name, size=torrent_path.stat().st_size)
    request = VideoImportCreate(
        target_url=args.url,
        magnet_uri=args.magnet,
        name=args.name,
        privacy=VideoPrivacy[args.privacy] if args.privacy else None,
    )

    async def run(services: Services) -> None:
        result = await services.resolver.resolve(
            request,
            channel_id=args.channel_id,
            requester=Requester(user_id=args.user_id),
            torrent_file=torrent_file,
        )
        console.print_json(
            data={
                "video_import_id": result.video_import_id,
                "video": {"id": result.video.id, "uuid": result.video.uuid, "name": result.video.name},
                "job": {"id": result.job.job_id, "type": result.job.job_type},
            }
        )

    await _with_services(settings, run)


async def _cmd_view(args: argparse.Namespace, settings: Settings) -> None:
    async def run(services: Services) -> None:
        video = await services.coordinator.load_video(args.video_id)
        outcome = await services.coordinator.view_video(video, args.viewer)
        console.print_json(data={"video_id": video.id, "outcome": outcome.value})

    await _with_services(settings, run)


if __name__ == "__main__":
    main()

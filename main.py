#!/usr/bin/env python3
"""
Visualization Pipeline - Main Entry Point

Generates guided-visualization assets (text, image, narration, video),
stores them and resumes pending video jobs.

Usage:
    # Generate and save a visualization
    python main.py generate --prompt "Run my first marathon" --owner user-1

    # Include a video and a reference photo
    python main.py generate --prompt "..." --kinds text image audio video --reference me.jpg --owner user-1

    # Check a pending video once
    python main.py resume 1718000000000_ab12cd --owner user-1

    # List saved visualizations
    python main.py list --owner user-1

    # Create the database table
    python main.py init-db

    # Report missing configuration
    python main.py status
"""

import argparse
import asyncio
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("visualization")


def load_reference(value: str):
    """A reference image from a local file or an http(s) URL."""
    from services.generation import HostedPayload, InlinePayload

    if value.startswith(("http://", "https://")):
        return HostedPayload(url=value)

    path = Path(value)
    content_type = mimetypes.guess_type(path.name)[0] or "image/png"
    return InlinePayload(data=path.read_bytes(), content_type=content_type)


def write_inline_assets(result, output_dir: str):
    """Save inline payloads locally when nothing is uploaded."""
    from services.generation import InlinePayload

    extensions = {"image/jpeg": "jpg", "image/png": "png", "audio/wav": "wav", "video/mp4": "mp4"}
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    for kind, outcome in result.outcomes.items():
        if isinstance(outcome.payload, InlinePayload):
            ext = extensions.get(outcome.payload.content_type, "bin")
            path = out / f"{result.request_id}_{kind.value}.{ext}"
            path.write_bytes(outcome.payload.data)
            print(f"  saved {kind.value} -> {path}")


def print_record(record):
    print(f"{record.id}  {record.created_at:%Y-%m-%d %H:%M}  video={record.video_status.value if record.video_status else '-'}")
    print(f"  input: {record.input_text[:80]}")
    for label, url in (("image", record.image_url), ("audio", record.audio_url), ("video", record.video_url)):
        if url:
            print(f"  {label}: {url}")


async def generate_visualization(
    prompt: str,
    owner_id: str,
    kinds: list,
    quality: str = "medium",
    duration: Optional[int] = None,
    references: Optional[list] = None,
    save: bool = True,
    output_dir: str = "./output",
) -> bool:
    """
    Generate a visualization and optionally save it.

    Returns:
        True when at least one kind completed
    """
    from core.clients import ServiceClients
    from core.config import get_config
    from core.errors import GenerationError
    from services.generation import AssetStatus, GenerationRequest
    from services.pipeline import VisualizationPipeline

    config = get_config()
    for issue in config.validate():
        logger.warning(f"Config: {issue}")

    def print_progress(request_id: str, percent: int, message: str):
        print(f"[{percent:3d}%] {message}")

    request = GenerationRequest(
        prompt=prompt,
        enabled_kinds=frozenset(kinds),
        reference_images=[load_reference(ref) for ref in references or []],
        image_quality=quality,
        video_duration_seconds=config.clamp_video_duration(duration),
    )

    clients = ServiceClients(config)
    try:
        pipeline = await VisualizationPipeline.from_clients(clients, on_progress=print_progress, with_store=save)
        outcome = await pipeline.generate_and_save(request, owner_id)
    except GenerationError as e:
        logger.error(f"{e.code}: {e.message} (ref: {e.correlation_id})")
        return False
    finally:
        await clients.close()

    result = outcome.result
    print()
    for kind, status in result.status_map().items():
        print(f"{kind.value:>6}: {status.value}")
    if outcome.record:
        print()
        print_record(outcome.record)
    else:
        write_inline_assets(result, output_dir)
    for line in outcome.messages:
        print(f"! {line}")

    return any(status == AssetStatus.COMPLETED for status in result.status_map().values())


async def resume_visualization(record_id: str, owner_id: str) -> bool:
    from core.clients import ServiceClients
    from core.errors import GenerationError
    from services.pipeline import VisualizationPipeline

    clients = ServiceClients()
    try:
        pipeline = await VisualizationPipeline.from_clients(clients)
        record = await pipeline.resume(owner_id, record_id)
    except GenerationError as e:
        logger.error(f"{e.code}: {e.message} (ref: {e.correlation_id})")
        return False
    finally:
        await clients.close()

    print_record(record)
    return True


async def list_visualizations(owner_id: str, limit: int):
    from core.clients import ServiceClients
    from services.persistence import RecordStore

    clients = ServiceClients()
    try:
        store = RecordStore(await clients.db_pool())
        records = await store.list_for_owner(owner_id, limit=limit)
    finally:
        await clients.close()

    if not records:
        print("No visualizations")
    for record in records:
        print_record(record)


async def init_db():
    from core.clients import ServiceClients
    from services.persistence import RecordStore

    clients = ServiceClients()
    try:
        await RecordStore(await clients.db_pool()).ensure_schema()
    finally:
        await clients.close()


def main():
    parser = argparse.ArgumentParser(
        description="Visualization Pipeline - guided visualization asset generation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Generate command
    gen_parser = subparsers.add_parser("generate", help="Generate a visualization")
    gen_parser.add_argument("--prompt", "-p", required=True, help="Aspiration to visualize")
    gen_parser.add_argument(
        "--kinds",
        nargs="+",
        choices=["text", "image", "audio", "video"],
        default=["text", "image", "audio"],
        help="Asset kinds to generate",
    )
    gen_parser.add_argument(
        "--quality",
        choices=["medium", "high"],
        default="medium",
        help="Image quality tier",
    )
    gen_parser.add_argument("--duration", type=int, help="Video duration in seconds (2-6)")
    gen_parser.add_argument(
        "--reference",
        nargs="+",
        default=[],
        help="Up to 3 reference images (files or URLs)",
    )
    gen_parser.add_argument("--owner", required=True, help="Owner id of the visualization")
    gen_parser.add_argument("--no-save", action="store_true", help="Skip uploads and the record store")
    gen_parser.add_argument("--output", "-o", default="./output", help="Output directory with --no-save")

    # Resume command
    resume_parser = subparsers.add_parser("resume", help="Check a pending video once")
    resume_parser.add_argument("record_id", help="Visualization id")
    resume_parser.add_argument("--owner", required=True, help="Owner id")

    # List command
    list_parser = subparsers.add_parser("list", help="List saved visualizations")
    list_parser.add_argument("--owner", required=True, help="Owner id")
    list_parser.add_argument("--limit", type=int, default=20)

    # Init command
    subparsers.add_parser("init-db", help="Create the visualizations table")

    # Status command
    subparsers.add_parser("status", help="Check configuration")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "generate":
        ok = asyncio.run(
            generate_visualization(
                prompt=args.prompt,
                owner_id=args.owner,
                kinds=args.kinds,
                quality=args.quality,
                duration=args.duration,
                references=args.reference,
                save=not args.no_save,
                output_dir=args.output,
            )
        )
        sys.exit(0 if ok else 1)

    elif args.command == "resume":
        ok = asyncio.run(resume_visualization(args.record_id, args.owner))
        sys.exit(0 if ok else 1)

    elif args.command == "list":
        asyncio.run(list_visualizations(args.owner, args.limit))

    elif args.command == "init-db":
        asyncio.run(init_db())
        print("Schema ready")

    elif args.command == "status":
        from core.config import get_config

        issues = get_config().validate()
        if not issues:
            print("Configuration OK")
        for issue in issues:
            print(f"! {issue}")
        sys.exit(1 if issues else 0)


if __name__ == "__main__":
    main()

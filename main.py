"""errorpipe CLI: capture messages, inspect and drain the persisted offline queue."""

import asyncio
import json
import logging
import sys
from argparse import ArgumentParser
from dataclasses import replace

from errorpipe.config import load_config
from errorpipe.errors import ErrorPipelineError
from errorpipe.network import NetworkMonitor
from errorpipe.pipeline import ErrorPipeline
from errorpipe.storage import JsonFileBackend, StorageManager

logger = logging.getLogger("errorpipe.cli")

DEFAULT_STORAGE = "errorpipe-state.json"


def build_parser() -> ArgumentParser:
    """Build the CLI argument parser."""
    parser = ArgumentParser(
        prog="errorpipe",
        description="Capture errors and manage the offline delivery queue.",
    )
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument(
        "--storage",
        help=f"State file for the offline queue (default: config value or {DEFAULT_STORAGE})",
    )
    parser.add_argument(
        "--adapter",
        choices=["console", "jsonl"],
        default="console",
        help="Delivery adapter (default: console)",
    )
    parser.add_argument("--output", help="Output file for the jsonl adapter")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    capture = sub.add_parser("capture", help="Capture a message")
    capture.add_argument("message")
    capture.add_argument("--level", default="info", help="debug, info, warning, error or fatal")
    capture.add_argument(
        "--offline",
        action="store_true",
        help="Treat the network as offline so the message is queued",
    )

    sub.add_parser("stats", help="Show delivery metrics and queue statistics")
    sub.add_parser("flush", help="Retry every queued error now")

    prune = sub.add_parser("prune", help="Drop queued errors older than --max-age")
    prune.add_argument("--max-age", type=float, required=True, help="Maximum age in seconds")

    return parser


def build_pipeline(args) -> ErrorPipeline:
    config = load_config(args.config)
    storage_path = args.storage or config.offline.storage_path or DEFAULT_STORAGE
    storage = StorageManager(JsonFileBackend(storage_path), max_queue_size=config.offline.max_size)
    network = NetworkMonitor(online=not getattr(args, "offline", False))
    return ErrorPipeline(config, storage=storage, network=network)


async def run(args) -> int:
    pipeline = build_pipeline(args)
    await pipeline.initialize()
    try:
        if args.command == "stats":
            report = {
                "metrics": await pipeline.get_metrics(),
                "queue": await pipeline.get_statistics(),
            }
            print(json.dumps(report, indent=2, default=str))
            return 0

        if args.command == "prune":
            pruned = await pipeline.queue.prune_old_items(args.max_age) if pipeline.queue else 0
            print(f"Pruned {pruned} queued error(s)")
            return 0

        adapter_config = pipeline.config.adapter_config(args.adapter)
        if args.output:
            adapter_config = replace(adapter_config, options={**adapter_config.options, "path": args.output})
        await pipeline.use_adapter(args.adapter, adapter_config)

        if args.command == "capture":
            error = await pipeline.capture_message(args.message, args.level)
            print(json.dumps(error.to_dict() if error else None, indent=2, default=str))
            return 0

        drained = await pipeline.flush()
        stats = await pipeline.get_statistics()
        print(f"Queue drained: {drained} (remaining={stats['queue_size']})")
        return 0 if drained else 1
    finally:
        await pipeline.destroy()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [ERRORPIPE] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        return asyncio.run(run(args))
    except (ErrorPipelineError, ValueError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())

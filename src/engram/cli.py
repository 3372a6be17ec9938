from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from engram.memory import Memory, build_service, scheduler
from engram.memory.models import OBSERVATION_TYPES

REINDEX_PAGE = 500


def _positive_int(value: str) -> int:
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError("value must be a positive integer")
    return ivalue


def _non_negative_int(value: str) -> int:
    ivalue = int(value)
    if ivalue < 0:
        raise argparse.ArgumentTypeError("value must be zero or greater")
    return ivalue


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m engram",
        description="Hybrid keyword + vector search over coding-session memory.",
    )
    parser.add_argument(
        "--db",
        default=None,
        help="SQLite database path (defaults to ENGRAM_DB_PATH / config.toml).",
    )
    parser.add_argument(
        "--project",
        "-p",
        default=None,
        help="Project namespace (defaults to ENGRAM_PROJECT).",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="<command>", required=True)

    search_cmd = subparsers.add_parser("search", help="Ranked hybrid search.")
    search_cmd.add_argument("query", help="Free-text query.")
    search_cmd.add_argument("--type", "-t", choices=OBSERVATION_TYPES, default=None, help="Observation type filter.")
    search_cmd.add_argument("--limit", "-n", type=_positive_int, default=10, help="Maximum results (default 10).")
    search_cmd.add_argument("--since", type=int, default=None, help="Earliest created_at_epoch (ms, inclusive).")
    search_cmd.add_argument("--until", type=int, default=None, help="Latest created_at_epoch (ms, inclusive).")

    timeline_cmd = subparsers.add_parser("timeline", help="Observations around an anchor.")
    anchor = timeline_cmd.add_mutually_exclusive_group(required=True)
    anchor.add_argument("--id", type=int, dest="anchor_id", help="Anchor observation id.")
    anchor.add_argument("--query", "-q", help="Use the best keyword match as the anchor.")
    timeline_cmd.add_argument("--before", type=_non_negative_int, default=3, help="Observations before (default 3).")
    timeline_cmd.add_argument("--after", type=_non_negative_int, default=3, help="Observations after (default 3).")

    subparsers.add_parser("status", help="Show which retrieval back-ends are active.")
    subparsers.add_parser("reindex", help="Re-embed every observation of the project.")
    subparsers.add_parser("sync", help="Backfill missing vectors and drop orphaned ones.")

    return parser


async def _reindex(memory: Memory) -> dict[str, Any]:
    project = memory.service.project
    total = await memory.observations.count(project)
    indexed = 0
    for offset in range(0, total, REINDEX_PAGE):
        batch = await memory.observations.recent(project, limit=REINDEX_PAGE, offset=offset)
        indexed += await memory.service.index_batch(batch)
    return {"project": project, "observations": total, "indexed": indexed}


async def _dispatch(args: argparse.Namespace, memory: Memory) -> Any:
    service = memory.service

    if args.command == "search":
        time_range = None
        if args.since is not None or args.until is not None:
            time_range = (args.since, args.until)
        response = await service.search(args.query, limit=args.limit, type_filter=args.type, time_range=time_range)
        return response.to_dict()

    if args.command == "timeline":
        if args.anchor_id is not None:
            result = await service.timeline(args.anchor_id, args.before, args.after)
        else:
            result = await service.timeline_by_query(args.query, args.before, args.after)
        return result.to_dict()

    if args.command == "status":
        return (await service.status()).to_dict()

    if args.command == "reindex":
        return await _reindex(memory)

    if args.command == "sync":
        return await scheduler.sync_once(service, memory.observations)

    raise ValueError(f"Unknown command '{args.command}'")


async def _run(args: argparse.Namespace) -> Any:
    memory = build_service(db_path=args.db, project=args.project)
    try:
        return await _dispatch(args, memory)
    finally:
        await memory.close()


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    result = asyncio.run(_run(args))
    json.dump(result, sys.stdout, indent=2)
    sys.stdout.write("\n")


__all__ = ["main", "build_parser"]

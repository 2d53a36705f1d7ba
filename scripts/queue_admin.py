#!/usr/bin/env python3
"""
Queue Admin — inspect and repair the durable job queue by hand.

Usage:
    python scripts/queue_admin.py stats
    python scripts/queue_admin.py peek --count 5
    python scripts/queue_admin.py dead-letters --limit 20
    python scripts/queue_admin.py replay --limit 10
    python scripts/queue_admin.py clear --yes
"""
import asyncio
import json
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()


async def run(args) -> int:
    from config.log_setup import configure_logging
    from config.settings import load_settings
    from core.container import build_services

    settings = load_settings()
    configure_logging(settings.debug)
    services = build_services(settings)
    queue = services.job_queue
    await queue.connect()

    try:
        if args.command == "stats":
            stats = await queue.stats()
            print(f"Queue:        {queue.queue_name}")
            print(f"  pending:    {stats.pending}")
            print(f"  delayed:    {stats.delayed}")
            print(f"  dead:       {stats.failed}")

        elif args.command == "peek":
            for job in await queue.peek(args.count):
                print(f"{job.id}  {job.type.value:<28} retries={job.retries}  {job.timestamp.isoformat()}")

        elif args.command == "dead-letters":
            records = await queue.list_dead_letters(args.limit)
            if not records:
                print("Dead-letter list is empty.")
            for record in records:
                print(json.dumps(json.loads(record.to_json()), indent=2))

        elif args.command == "replay":
            replayed = await queue.replay_dead_letters(args.limit)
            print(f"Replayed {replayed} jobs onto {queue.queue_name}.")

        elif args.command == "clear":
            if not args.yes:
                print("Refusing to clear without --yes.")
                return 1
            cleared = await queue.clear_dead_letters()
            print(f"Cleared {cleared} dead-letter records.")
    finally:
        await services.close()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Durable job queue administration")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="Show pending, delayed, and dead-letter counts")

    peek = sub.add_parser("peek", help="Show the next pending jobs")
    peek.add_argument("--count", type=int, default=10)

    dead = sub.add_parser("dead-letters", help="Print recent dead-letter records")
    dead.add_argument("--limit", type=int, default=50)

    replay = sub.add_parser("replay", help="Move dead-lettered jobs back onto the queue")
    replay.add_argument("--limit", type=int, default=None)

    clear = sub.add_parser("clear", help="Delete every dead-letter record")
    clear.add_argument("--yes", action="store_true", help="Confirm deletion")

    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()

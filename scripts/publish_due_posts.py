#!/usr/bin/env python3
"""
Publish Scheduled Posts
=======================
Publishes every scheduled post whose time has come. Run it from cron (or any
other scheduler) every minute:

    * * * * * cd /srv/postflow && python scripts/publish_due_posts.py

Usage:
    python scripts/publish_due_posts.py [--limit 100] [--dry-run]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.database import SessionLocal, engine, Base  # noqa: E402
from app.worker.publisher import PublishOrchestrator, find_posts_ready_for_publishing  # noqa: E402


def run(limit: int, dry_run: bool = False) -> int:
    """Process due posts; returns the number that failed."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        if dry_run:
            due = find_posts_ready_for_publishing(db, limit=limit)
            print(f"[DRY RUN] {len(due)} post(s) due")
            for post in due:
                print(f"  - #{post.id} {post.platform}/{post.post_type} scheduled {post.scheduled_at}")
            return 0

        summary = asyncio.run(PublishOrchestrator(db).publish_due_posts(limit=limit))
    finally:
        db.close()

    print(f"Processed {summary['processed']} post(s): {summary['published']} published, {summary['failed']} failed")
    for entry in summary["results"]:
        if not entry["success"]:
            print(f"  ✗ #{entry['post_id']} {entry['platform']}: {entry['error']}")
    return summary["failed"]


def main():
    parser = argparse.ArgumentParser(description="Publish scheduled posts that are due")
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum number of posts to process (default: 100)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List due posts without publishing them"
    )
    args = parser.parse_args()

    failed = run(args.limit, args.dry_run)
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
import argparse
import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.append(os.getcwd())

from blob_cleaner.db.session import AsyncSessionLocal, engine
from blob_cleaner.domain.stages import Stage, CLEANUP_ORDER
from blob_cleaner.scheduler.ticker import run_cleanup_pass, refresh_stuck_gauges
from blob_cleaner.services.deleter import BlobDeleter
from blob_cleaner.services.storage import build_blob_store
from blob_cleaner.settings import settings


async def _main() -> int:
    parser = argparse.ArgumentParser(description="Delete blobs of finished jobs that nothing downstream still needs.")
    parser.add_argument("--limit", type=int, default=settings.CLEANUP_BATCH_SIZE, help="candidates per stage per pass")
    parser.add_argument("--passes", type=int, default=1)
    parser.add_argument("--stage", action="append", choices=[str(s) for s in Stage], help="restrict to stage (repeatable)")
    parser.add_argument("--dry-run", action="store_true", default=False)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    stages = [Stage(s) for s in args.stage] if args.stage else list(CLEANUP_ORDER)
    store = build_blob_store(settings)
    deleter = BlobDeleter(store, session_factory=AsyncSessionLocal)

    failed = 0
    try:
        for i in range(args.passes):
            report = await run_cleanup_pass(
                deleter,
                session_factory=AsyncSessionLocal,
                batch_size=args.limit,
                stages=stages,
                dry_run=args.dry_run,
            )
            failed += report.failed
            print(f"pass={i + 1} cleaned={report.cleaned} failed={report.failed} dry_run={args.dry_run}")
            for stage, r in report.stages.items():
                line = f"  {stage}: candidates={r.candidates} cleaned={r.cleaned} skipped={r.skipped} failed={r.failed}"
                if args.dry_run:
                    line += f" would_clean={r.would_clean}"
                print(line)

        async with AsyncSessionLocal() as session:
            stuck = await refresh_stuck_gauges(session, stages=stages)
        print("stuck: " + ", ".join(f"{stage}={count}" for stage, count in stuck.items()))
    finally:
        await store.close()
        await engine.dispose()

    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))

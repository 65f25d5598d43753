#!/usr/bin/env python3
import asyncio
import sys
import os
from datetime import datetime, timezone

from sqlalchemy import delete

# Add project root to path
sys.path.append(os.getcwd())

from blob_cleaner.db.session import AsyncSessionLocal
from blob_cleaner.db.models import LeafAggregationWitnessJob, NodeAggregationWitnessJob
from blob_cleaner.domain.models import JobRecord
from blob_cleaner.domain.stages import Stage
from blob_cleaner.domain.states import JobStatus
from blob_cleaner.scheduler.ticker import run_cleanup_pass
from blob_cleaner.services.deleter import BlobDeleter
from blob_cleaner.services.storage import InMemoryBlobStore

# Far above anything the pipeline produces, so real rows are untouched
BATCH = 9_000_000_001


async def verify_cleanup():
    print("Starting Blob Cleanup Verification...")
    store = InMemoryBlobStore()
    deleter = BlobDeleter(store, session_factory=AsyncSessionLocal)
    now = datetime.now(timezone.utc)

    async with AsyncSessionLocal() as session:
        # 1. Setup Data: finished leaf job with a queued consumer
        await session.execute(delete(LeafAggregationWitnessJob).where(LeafAggregationWitnessJob.l1_batch_number == BATCH))
        await session.execute(delete(NodeAggregationWitnessJob).where(NodeAggregationWitnessJob.l1_batch_number == BATCH))
        leaf = LeafAggregationWitnessJob(l1_batch_number=BATCH, status=JobStatus.SUCCESSFUL, processing_finished_at=now)
        node = NodeAggregationWitnessJob(l1_batch_number=BATCH, status=JobStatus.QUEUED)
        session.add_all([leaf, node])
        await session.commit()
        print(f"Created leaf job {leaf.id} and queued node job {node.id} for batch {BATCH}")

        refs = JobRecord(id=leaf.id, stage=Stage.LEAF, l1_batch_number=BATCH, status=JobStatus.SUCCESSFUL).blob_refs
        for ref in refs:
            store.put(ref, b"witness")

        # 2. Consumer still queued: blob must survive
        await run_cleanup_pass(deleter, stages=[Stage.LEAF])
        await session.refresh(leaf)
        assert not leaf.is_blob_cleaned, "Leaf marked cleaned while its consumer is queued"
        assert all(store.exists(ref) for ref in refs), "Blob deleted while still referenced"
        print("Verified referenced blob was kept.")

        # 3. Consumer finishes: blob goes, flag flips
        node.status = JobStatus.SUCCESSFUL
        node.processing_finished_at = now
        await session.commit()

        await run_cleanup_pass(deleter, stages=[Stage.LEAF])
        await session.refresh(leaf)
        assert leaf.is_blob_cleaned, "Leaf not marked cleaned after consumer finished"
        assert not any(store.exists(ref) for ref in refs)
        print("Verified blob deleted and row marked.")

        # Cleanup
        await session.execute(delete(LeafAggregationWitnessJob).where(LeafAggregationWitnessJob.id == leaf.id))
        await session.execute(delete(NodeAggregationWitnessJob).where(NodeAggregationWitnessJob.id == node.id))
        await session.commit()
        print("Cleanup done.")

    print("SUCCESS: Blob cleanup verified.")

if __name__ == "__main__":
    asyncio.run(verify_cleanup())

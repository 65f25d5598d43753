import asyncio

import pytest

from sqlalchemy import delete

from blob_cleaner.commands.ledger import mark_cleaned
from blob_cleaner.domain.errors import StorageTimeoutError, StorageUnavailableError
from blob_cleaner.domain.stages import Stage
from blob_cleaner.domain.states import DeletionOutcome, JobStatus
from blob_cleaner.services.deleter import BlobDeleter
from blob_cleaner.services.storage import InMemoryBlobStore, DeleteResult


class SlowBlobStore(InMemoryBlobStore):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def delete(self, blob_ref: str) -> DeleteResult:
        await asyncio.sleep(self.delay)
        return await super().delete(blob_ref)


class BrokenBlobStore(InMemoryBlobStore):
    async def delete(self, blob_ref: str) -> DeleteResult:
        self.delete_calls.append(blob_ref)
        raise StorageUnavailableError("store is down")


async def test_deletes_then_marks(ledger, deleter, store):
    job = await ledger.add(Stage.LEAF, 1)

    outcome = await deleter.delete_and_mark(Stage.LEAF, job)

    assert outcome == DeletionOutcome.CLEANED
    assert sorted(store.delete_calls) == sorted(job.blob_refs)
    assert not any(store.exists(ref) for ref in job.blob_refs)
    assert await ledger.is_cleaned(Stage.LEAF, job.id) is True


async def test_second_call_short_circuits(ledger, deleter, store):
    job = await ledger.add(Stage.PROVER, 1)

    assert await deleter.delete_and_mark(Stage.PROVER, job) == DeletionOutcome.CLEANED
    calls = len(store.delete_calls)

    # Stale record still says uncleaned; the fresh read catches it
    assert await deleter.delete_and_mark(Stage.PROVER, job) == DeletionOutcome.ALREADY_CLEANED
    assert len(store.delete_calls) == calls


async def test_cleaned_record_makes_no_storage_calls(ledger, deleter, store):
    job = await ledger.add(Stage.PROVER, 1)
    job.blob_cleaned = True

    assert await deleter.delete_and_mark(Stage.PROVER, job) == DeletionOutcome.ALREADY_CLEANED
    assert store.delete_calls == []


async def test_already_absent_blob_counts_as_deleted(ledger, deleter, store):
    job = await ledger.add(Stage.SCHEDULER, 4, with_blobs=False)

    assert await deleter.delete_and_mark(Stage.SCHEDULER, job) == DeletionOutcome.CLEANED
    assert await ledger.is_cleaned(Stage.SCHEDULER, job.id) is True


async def test_consumer_queued_after_selection_blocks_delete(ledger, deleter, store):
    job = await ledger.add(Stage.LEAF, 5)
    # Record was selected while nothing downstream existed; a consumer shows up afterwards
    await ledger.add(Stage.NODE, 5, JobStatus.QUEUED)

    assert await deleter.delete_and_mark(Stage.LEAF, job) == DeletionOutcome.SKIPPED_REFERENCED
    assert store.delete_calls == []
    assert all(store.exists(ref) for ref in job.blob_refs)
    assert await ledger.is_cleaned(Stage.LEAF, job.id) is False


async def test_owner_requeued_after_selection(ledger, deleter, store):
    job = await ledger.add(Stage.WITNESS, 6, JobStatus.FAILED)
    await ledger.set_status(Stage.WITNESS, job.id, JobStatus.QUEUED)

    assert await deleter.delete_and_mark(Stage.WITNESS, job) == DeletionOutcome.SKIPPED_NOT_TERMINAL
    assert store.delete_calls == []


async def test_missing_row(ledger, deleter, store):
    job = await ledger.add(Stage.NODE, 8)
    job.id = 9999

    assert await deleter.delete_and_mark(Stage.NODE, job) == DeletionOutcome.SKIPPED_MISSING
    assert store.delete_calls == []


async def test_timeout_leaves_flag_false(ledger, session_factory):
    store = SlowBlobStore(delay=1.0)
    deleter = BlobDeleter(store, session_factory=session_factory, storage_timeout=0.05)
    job = await ledger.add(Stage.PROVER, 1)

    with pytest.raises(StorageTimeoutError):
        await deleter.delete_and_mark(Stage.PROVER, job)
    assert await ledger.is_cleaned(Stage.PROVER, job.id) is False


async def test_unavailable_store_leaves_flag_false(ledger, session_factory):
    store = BrokenBlobStore()
    deleter = BlobDeleter(store, session_factory=session_factory)
    job = await ledger.add(Stage.NODE, 2)

    with pytest.raises(StorageUnavailableError):
        await deleter.delete_and_mark(Stage.NODE, job)
    assert await ledger.is_cleaned(Stage.NODE, job.id) is False


async def test_concurrent_deleters_mark_once(ledger, session_factory, store):
    job = await ledger.add(Stage.SCHEDULER, 11)
    first = BlobDeleter(store, session_factory=session_factory)
    second = BlobDeleter(store, session_factory=session_factory)

    outcomes = await asyncio.gather(
        first.delete_and_mark(Stage.SCHEDULER, job),
        second.delete_and_mark(Stage.SCHEDULER, job),
    )

    assert outcomes.count(DeletionOutcome.CLEANED) == 1
    assert outcomes.count(DeletionOutcome.ALREADY_CLEANED) == 1
    assert await ledger.is_cleaned(Stage.SCHEDULER, job.id) is True


class InterferingBlobStore(InMemoryBlobStore):
    """Runs `interfere` on the first delete, between the re-check and the mark."""

    def __init__(self, interfere):
        super().__init__()
        self.interfere = interfere
        self.done = False

    async def delete(self, blob_ref: str) -> DeleteResult:
        if not self.done:
            self.done = True
            await self.interfere()
        return await super().delete(blob_ref)


async def test_marked_by_another_worker_during_delete(ledger, session_factory):
    job = await ledger.add(Stage.PROVER, 3, with_blobs=False)

    async def other_worker_marks():
        async with session_factory() as session:
            await mark_cleaned(session, Stage.PROVER, job.id)
            await session.commit()

    store = InterferingBlobStore(other_worker_marks)
    deleter = BlobDeleter(store, session_factory=session_factory)

    assert await deleter.delete_and_mark(Stage.PROVER, job) == DeletionOutcome.ALREADY_CLEANED
    assert store.delete_calls == job.blob_refs
    assert await ledger.is_cleaned(Stage.PROVER, job.id) is True


async def test_row_removed_during_delete(ledger, session_factory):
    job = await ledger.add(Stage.LEAF, 12, with_blobs=False)

    async def pipeline_removes_row():
        async with session_factory() as session:
            await session.execute(delete(Stage.LEAF.model).where(Stage.LEAF.model.id == job.id))
            await session.commit()

    store = InterferingBlobStore(pipeline_removes_row)
    deleter = BlobDeleter(store, session_factory=session_factory)

    assert await deleter.delete_and_mark(Stage.LEAF, job) == DeletionOutcome.SKIPPED_MISSING
    assert sorted(store.delete_calls) == sorted(job.blob_refs)

"""
Blob Cleaner - Test Configuration and Fixtures
"""
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

# Set testing environment before the app modules build their engine
os.environ['SQLALCHEMY_DATABASE_URI'] = 'sqlite+aiosqlite:///./test_blob_cleaner.db'
os.environ['SCHEDULER_ENABLED'] = 'false'
os.environ['BLOB_STORE_BACKEND'] = 'memory'

from blob_cleaner.db.session import Base
from blob_cleaner.domain.models import JobRecord
from blob_cleaner.domain.stages import Stage
from blob_cleaner.domain.states import JobStatus
from blob_cleaner.services.deleter import BlobDeleter
from blob_cleaner.services.storage import InMemoryBlobStore


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test; file-backed so separate sessions share it"""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def deleter(store, session_factory) -> BlobDeleter:
    return BlobDeleter(store, session_factory=session_factory, storage_timeout=0.5)


class Ledger:
    """Stands in for the proof pipeline: creates and advances job rows."""

    def __init__(self, session_factory, store: InMemoryBlobStore):
        self.session_factory = session_factory
        self.store = store

    async def add(
        self,
        stage: Stage,
        l1_batch_number: int,
        status: JobStatus = JobStatus.SUCCESSFUL,
        finished_ago: Optional[timedelta] = None,
        with_blobs: bool = True,
        **extra
    ) -> JobRecord:
        finished_at = None
        if status in (JobStatus.SUCCESSFUL, JobStatus.FAILED):
            finished_at = datetime.now(timezone.utc) - (finished_ago or timedelta(minutes=5))

        async with self.session_factory() as session:
            row = stage.model(
                l1_batch_number=l1_batch_number,
                status=status,
                processing_finished_at=finished_at,
                **extra,
            )
            session.add(row)
            await session.commit()
            record = JobRecord(
                id=row.id,
                stage=stage,
                l1_batch_number=l1_batch_number,
                status=status,
                blob_cleaned=False,
                processing_finished_at=finished_at,
            )

        if with_blobs:
            for ref in record.blob_refs:
                self.store.put(ref, b"blob")
        return record

    async def set_status(self, stage: Stage, job_id: int, status: JobStatus) -> None:
        async with self.session_factory() as session:
            row = await session.get(stage.model, job_id)
            row.status = status
            await session.commit()

    async def is_cleaned(self, stage: Stage, job_id: int) -> bool:
        async with self.session_factory() as session:
            row = await session.get(stage.model, job_id)
            return row.is_blob_cleaned


@pytest.fixture
def ledger(session_factory, store) -> Ledger:
    return Ledger(session_factory, store)

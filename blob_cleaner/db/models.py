from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, BigInteger, Boolean, DateTime, Index, false, func
from sqlalchemy.orm import Mapped, mapped_column

from blob_cleaner.db.session import Base
from blob_cleaner.domain.states import JobStatus

class BlobJobMixin:
    """
    Columns shared by every job table that owns blobs.

    Rows are created and advanced by the proof pipeline. This service only
    flips `is_blob_cleaned`, and only from false to true.
    """
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    l1_batch_number: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)

    status: Mapped[JobStatus] = mapped_column(String, default=JobStatus.QUEUED, index=True)
    is_blob_cleaned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    processing_finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(String, nullable=True)

class WitnessInput(BlobJobMixin, Base):
    __tablename__ = "witness_inputs"

    __table_args__ = (
        # Candidate scan: terminal + not cleaned
        Index("ix_witness_inputs_cleanup", "status", "is_blob_cleaned"),
    )

class LeafAggregationWitnessJob(BlobJobMixin, Base):
    __tablename__ = "leaf_aggregation_witness_jobs"

    number_of_basic_circuits: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_leaf_aggregation_witness_jobs_cleanup", "status", "is_blob_cleaned"),
    )

class NodeAggregationWitnessJob(BlobJobMixin, Base):
    __tablename__ = "node_aggregation_witness_jobs"

    number_of_leaf_circuits: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_node_aggregation_witness_jobs_cleanup", "status", "is_blob_cleaned"),
    )

class SchedulerWitnessJob(BlobJobMixin, Base):
    __tablename__ = "scheduler_witness_jobs"

    __table_args__ = (
        Index("ix_scheduler_witness_jobs_cleanup", "status", "is_blob_cleaned"),
    )

class ProverJob(BlobJobMixin, Base):
    __tablename__ = "prover_jobs"

    circuit_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    aggregation_round: Mapped[int] = mapped_column(Integer, default=0)
    sequence_number: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index("ix_prover_jobs_cleanup", "status", "is_blob_cleaned"),
    )

from dataclasses import dataclass
from enum import StrEnum, auto

from blob_cleaner.db.models import (
    BlobJobMixin,
    LeafAggregationWitnessJob,
    NodeAggregationWitnessJob,
    ProverJob,
    SchedulerWitnessJob,
    WitnessInput,
)

class Stage(StrEnum):
    """
    One of the five job tables that own blobs.

    Each stage knows its ORM model, the blobs a row owns and which later
    stages read those blobs as input. Downstream rows are matched on
    `l1_batch_number`.
    """
    LEAF = auto()
    NODE = auto()
    SCHEDULER = auto()
    WITNESS = auto()
    PROVER = auto()

    @property
    def config(self) -> "StageConfig":
        return STAGE_CONFIG[self]

    @property
    def model(self) -> type[BlobJobMixin]:
        return self.config.model

    @property
    def table_name(self) -> str:
        return self.config.model.__tablename__

    @property
    def downstream(self) -> tuple["Stage", ...]:
        return self.config.downstream

    def blob_refs(self, job_id: int, l1_batch_number: int) -> list[str]:
        # Prover jobs are many-per-batch, everything else is one row per batch
        key = job_id if self.config.keyed_by_job else l1_batch_number
        return [f"{self.table_name}/{blob}_{key}.bin" for blob in self.config.blob_names]

@dataclass(frozen=True)
class StageConfig:
    model: type[BlobJobMixin]
    blob_names: tuple[str, ...]
    downstream: tuple[Stage, ...] = ()
    keyed_by_job: bool = False

STAGE_CONFIG: dict[Stage, StageConfig] = {
    Stage.WITNESS: StageConfig(
        model=WitnessInput,
        blob_names=("merkle_tree_paths",),
        downstream=(Stage.LEAF,),
    ),
    Stage.LEAF: StageConfig(
        model=LeafAggregationWitnessJob,
        blob_names=("basic_circuits", "basic_circuits_inputs"),
        downstream=(Stage.NODE,),
    ),
    Stage.NODE: StageConfig(
        model=NodeAggregationWitnessJob,
        blob_names=("leaf_layer_subqueues", "aggregation_outputs"),
        downstream=(Stage.SCHEDULER,),
    ),
    Stage.SCHEDULER: StageConfig(
        model=SchedulerWitnessJob,
        blob_names=("scheduler_witness", "final_node_aggregations"),
    ),
    Stage.PROVER: StageConfig(
        model=ProverJob,
        blob_names=("circuit_input",),
        keyed_by_job=True,
    ),
}

# Order in which a cleanup pass visits the stages
CLEANUP_ORDER: tuple[Stage, ...] = (
    Stage.LEAF,
    Stage.NODE,
    Stage.SCHEDULER,
    Stage.WITNESS,
    Stage.PROVER,
)

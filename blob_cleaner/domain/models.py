from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from blob_cleaner.domain.stages import Stage
from blob_cleaner.domain.states import JobStatus, DeletionOutcome

@dataclass
class JobRecord:
    id: int
    stage: Stage
    l1_batch_number: int
    status: JobStatus
    blob_cleaned: bool = False
    processing_finished_at: Optional[datetime] = None

    @property
    def blob_refs(self) -> list[str]:
        return self.stage.blob_refs(self.id, self.l1_batch_number)

@dataclass
class StageReport:
    stage: Stage
    candidates: int = 0
    cleaned: int = 0
    already_cleaned: int = 0
    skipped: int = 0
    failed: int = 0
    # Filled in dry-run mode only
    would_clean: list[int] = field(default_factory=list)

    def record(self, outcome: DeletionOutcome) -> None:
        if outcome == DeletionOutcome.CLEANED:
            self.cleaned += 1
        elif outcome == DeletionOutcome.ALREADY_CLEANED:
            self.already_cleaned += 1
        else:
            self.skipped += 1

@dataclass
class CleanupReport:
    dry_run: bool = False
    stages: dict[Stage, StageReport] = field(default_factory=dict)

    def for_stage(self, stage: Stage) -> StageReport:
        if stage not in self.stages:
            self.stages[stage] = StageReport(stage=stage)
        return self.stages[stage]

    @property
    def cleaned(self) -> int:
        return sum(r.cleaned for r in self.stages.values())

    @property
    def failed(self) -> int:
        return sum(r.failed for r in self.stages.values())

    def as_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "cleaned": self.cleaned,
            "failed": self.failed,
            "stages": {
                str(stage): {
                    "candidates": r.candidates,
                    "cleaned": r.cleaned,
                    "already_cleaned": r.already_cleaned,
                    "skipped": r.skipped,
                    "failed": r.failed,
                    "would_clean": r.would_clean,
                }
                for stage, r in self.stages.items()
            },
        }

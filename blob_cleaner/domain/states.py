from enum import StrEnum, auto

class JobStatus(StrEnum):
    QUEUED = auto()       # Created by the pipeline, waiting for a worker
    IN_PROGRESS = auto()  # Picked up by a worker
    SUCCESSFUL = auto()   # Completed successfully
    FAILED = auto()       # Failed

# A blob may only be cleaned once its owner reached one of these
TERMINAL_STATUSES = (JobStatus.SUCCESSFUL, JobStatus.FAILED)

# A downstream row in one of these still needs its upstream blob
ACTIVE_STATUSES = (JobStatus.QUEUED, JobStatus.IN_PROGRESS)

class DeletionOutcome(StrEnum):
    CLEANED = auto()             # Blob(s) deleted and row marked
    ALREADY_CLEANED = auto()     # Row was already marked, nothing deleted
    SKIPPED_REFERENCED = auto()  # A downstream job still needs the blob
    SKIPPED_NOT_TERMINAL = auto()  # Owner went back to an active status
    SKIPPED_MISSING = auto()     # Row no longer exists

class BlobCleanupError(Exception):
    """Base exception for blob cleanup errors."""
    kind = "error"

class ConfigurationError(BlobCleanupError):
    kind = "configuration"

class JobNotFoundError(BlobCleanupError):
    kind = "not_found"

    def __init__(self, stage, job_id):
        super().__init__(f"Job {job_id} not found in {stage}")
        self.stage = stage
        self.job_id = job_id

class CleanupConflictError(BlobCleanupError):
    kind = "conflict"

    def __init__(self, stage, job_id):
        super().__init__(f"Job {job_id} in {stage} was already marked cleaned")
        self.stage = stage
        self.job_id = job_id

class StorageError(BlobCleanupError):
    kind = "storage"

class StorageUnavailableError(StorageError):
    kind = "storage_unavailable"

class StorageTimeoutError(StorageError):
    kind = "storage_timeout"

    def __init__(self, blob_ref, timeout):
        super().__init__(f"Deleting blob {blob_ref} timed out after {timeout}s")
        self.blob_ref = blob_ref
        self.timeout = timeout

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
BLOBS_DELETED = Counter(
    "blob_cleanup_deleted_total",
    "Jobs whose blobs were deleted and marked cleaned",
    ["stage"]
)

CLEANUP_FAILURES = Counter(
    "blob_cleanup_failures_total",
    "Per-job cleanup failures",
    ["stage", "kind"] # kind=storage_unavailable|storage_timeout|unexpected
)

CLEANUP_SKIPPED = Counter(
    "blob_cleanup_skipped_total",
    "Candidates left untouched during a pass",
    ["stage", "reason"]
)

CLEANUP_PASS_DURATION = Histogram(
    "blob_cleanup_pass_seconds",
    "Wall time of one cleanup pass over all stages",
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0]
)

STUCK_BLOBS = Gauge(
    "blob_cleanup_stuck_blobs",
    "Terminal jobs still uncleaned past the alert threshold",
    ["stage"]
)

@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

"""Workers package for background job processing."""

from src.workers.enrichment_worker import (
    process_annotation_job,
    process_annotation_job_sync,
    queue_annotation,
)

__all__ = [
    "process_annotation_job",
    "process_annotation_job_sync",
    "queue_annotation",
]

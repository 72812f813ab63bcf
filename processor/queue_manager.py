"""Queue manager for analysis job rows."""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import DateTime, Integer, String, Text, text
from sqlalchemy.orm import Session

from processor.records import AnalysisRecord, ContentKind, JobStatus

logger = structlog.get_logger()

JOB_COLUMNS = {
    "id": Integer,
    "content_type": String,
    "content_id": String,
    "status": String,
    "result": Text,
    "error_message": Text,
    "created_at": DateTime,
    "processed_at": DateTime,
}


@dataclass
class AnalysisJob:
    """Snapshot of one job row."""

    id: int
    content_kind: ContentKind
    content_id: str
    status: JobStatus
    result: Optional[AnalysisRecord] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class AnalysisQueueManager:
    """Records job status transitions in the ai_processing_queue table.

    Every transition is a guarded UPDATE: a row only moves forward
    (pending -> processing -> completed | failed) and terminal rows never change.
    """

    def __init__(self, db: Session):
        self.db = db

    def enqueue(self, content_kind: ContentKind, content_id: str) -> int:
        """Insert a pending job.

        Duplicate submissions for the same content are accepted and create
        another row; no lock is taken.

        Returns:
            Job ID
        """
        query = text("""
            INSERT INTO ai_processing_queue (content_type, content_id, status, created_at)
            VALUES (:content_type, :content_id, 'pending', CURRENT_TIMESTAMP)
            RETURNING id
        """)
        result = self.db.execute(
            query,
            {"content_type": ContentKind(content_kind).value, "content_id": str(content_id)},
        )
        job_id = result.scalar()
        self.db.commit()

        logger.info(
            "Analysis job enqueued",
            job_id=job_id,
            content_kind=ContentKind(content_kind).value,
            content_id=content_id,
        )
        return job_id

    def mark_processing(self, job_id: int) -> bool:
        """Move a pending job to processing. Re-marking a processing job is a no-op."""
        query = text("""
            UPDATE ai_processing_queue
            SET status = 'processing'
            WHERE id = :job_id AND status IN ('pending', 'processing')
        """)
        return self._transition(query, {"job_id": job_id}, job_id, JobStatus.PROCESSING)

    def complete(self, job_id: int, record: AnalysisRecord) -> bool:
        """Mark a job completed with its analysis record."""
        query = text("""
            UPDATE ai_processing_queue
            SET status = 'completed', result = :result, error_message = NULL,
                processed_at = CURRENT_TIMESTAMP
            WHERE id = :job_id AND status IN ('pending', 'processing')
        """)
        params = {
            "job_id": job_id,
            "result": json.dumps(record.to_dict(), ensure_ascii=False),
        }
        return self._transition(query, params, job_id, JobStatus.COMPLETED)

    def fail(self, job_id: int, error: str) -> bool:
        """Mark a job failed with the captured error message."""
        query = text("""
            UPDATE ai_processing_queue
            SET status = 'failed', error_message = :error, processed_at = CURRENT_TIMESTAMP
            WHERE id = :job_id AND status IN ('pending', 'processing')
        """)
        return self._transition(query, {"job_id": job_id, "error": error}, job_id, JobStatus.FAILED)

    def get(self, job_id: int) -> Optional[AnalysisJob]:
        """Get a job by ID."""
        query = text("""
            SELECT id, content_type, content_id, status, result, error_message,
                   created_at, processed_at
            FROM ai_processing_queue
            WHERE id = :job_id
        """).columns(**JOB_COLUMNS)
        row = self.db.execute(query, {"job_id": job_id}).fetchone()
        return _to_job(row) if row else None

    def get_latest(self, content_kind: ContentKind, content_id: str) -> Optional[AnalysisJob]:
        """Get the most recent job for a piece of content."""
        query = text("""
            SELECT id, content_type, content_id, status, result, error_message,
                   created_at, processed_at
            FROM ai_processing_queue
            WHERE content_type = :content_type AND content_id = :content_id
            ORDER BY created_at DESC, id DESC
            LIMIT 1
        """).columns(**JOB_COLUMNS)
        row = self.db.execute(
            query,
            {"content_type": ContentKind(content_kind).value, "content_id": str(content_id)},
        ).fetchone()
        return _to_job(row) if row else None

    def _transition(self, query, params: Dict[str, Any], job_id: int, status: JobStatus) -> bool:
        result = self.db.execute(query, params)
        self.db.commit()

        if result.rowcount == 0:
            logger.warning(
                "Job transition rejected",
                job_id=job_id,
                requested_status=status.value,
            )
            return False

        logger.info("Job status updated", job_id=job_id, status=status.value)
        return True


def _to_job(row) -> AnalysisJob:
    record = None
    if row.result:
        try:
            record = AnalysisRecord.from_dict(json.loads(row.result))
        except (ValueError, TypeError) as e:
            logger.error("Stored analysis result is not valid JSON", job_id=row.id, error=str(e))

    return AnalysisJob(
        id=row.id,
        content_kind=ContentKind(row.content_type),
        content_id=row.content_id,
        status=JobStatus(row.status),
        result=record,
        error_message=row.error_message,
        created_at=row.created_at,
        processed_at=row.processed_at,
    )

"""Analyze processor for submitted content."""

import asyncio
from typing import Any, Callable, Dict, Optional, Protocol

import structlog
from sqlalchemy.orm import Session

from processor.queue_manager import AnalysisQueueManager
from processor.records import AnalysisRecord, ContentKind
from processor.services.content_accessor import (
    ContentAccessor,
    ContentNotFoundError,
    parse_content_kind,
)
from processor.services.model_client import AnalysisRequest


class ModelQueue(Protocol):
    async def enqueue(self, request: AnalysisRequest) -> AnalysisRecord:
        ...


class AnalyzeContentProcessor:
    """Runs one analysis job from processing to a terminal state."""

    job_type = "analyze_content"

    def __init__(self, session_factory: Callable[[], Session], model_queue: ModelQueue):
        """Initialize processor.

        Args:
            session_factory: Callable returning a new database session
            model_queue: Queue that serializes model requests
        """
        self.session_factory = session_factory
        self.model_queue = model_queue
        self.logger = structlog.get_logger().bind(processor=self.job_type)

    async def process(
        self,
        job_id: int,
        content_kind: ContentKind,
        content_id: str,
        final_attempt: bool = True,
    ) -> Optional[AnalysisRecord]:
        """Process an analysis job.

        The job is marked completed before the summary is written back to the
        content row; a write-back failure is logged and does not change the job.
        A job that is already terminal, for example a redelivered broker
        message, is left untouched and the model is not called.

        Args:
            job_id: Job row to transition
            content_kind: Kind of content
            content_id: Content row ID
            final_attempt: Whether a failure should be recorded as terminal.
                Broker retries pass False so the row stays processing.

        Returns:
            The analysis record, or None when the job row was already terminal
            and nothing was stored

        Raises:
            Exception: Whatever failed, after recording it when final_attempt is set
        """
        kind = parse_content_kind(content_kind)
        log = self.logger.bind(job_id=job_id, content_kind=kind.value, content_id=content_id)

        try:
            started = await asyncio.to_thread(self._with_queue, lambda q: q.mark_processing(job_id))
            if not started:
                log.warning("Job already finished, skipping analysis")
                return None

            content = await asyncio.to_thread(self._fetch_content, kind, content_id)
            if content is None:
                raise ContentNotFoundError(kind.value, content_id)

            log.info("Starting content analysis")
            record = await self.model_queue.enqueue(AnalysisRequest(content_kind=kind, content=content))

            completed = await asyncio.to_thread(self._with_queue, lambda q: q.complete(job_id, record))
        except Exception as e:
            if final_attempt:
                log.error("Content analysis failed", error=str(e))
                await asyncio.to_thread(self._with_queue, lambda q: q.fail(job_id, str(e) or type(e).__name__))
            else:
                log.warning("Content analysis attempt failed, will retry", error=str(e))
            raise

        if not completed:
            log.warning("Job finished during analysis, result discarded", source=record.source)
            return None

        try:
            await asyncio.to_thread(self._write_back, kind, content_id, record)
        except Exception as e:
            log.error("Failed to write analysis back to content", error=str(e))

        log.info(
            "Content analysis complete",
            source=record.source,
            confidence=record.confidence,
            corrections_count=len(record.corrections),
        )
        return record

    def _with_queue(self, fn: Callable[[AnalysisQueueManager], Any]) -> Any:
        db = self.session_factory()
        try:
            return fn(AnalysisQueueManager(db))
        finally:
            db.close()

    def _fetch_content(self, kind: ContentKind, content_id: str) -> Optional[Dict[str, Any]]:
        db = self.session_factory()
        try:
            return ContentAccessor(db).fetch(kind, content_id)
        finally:
            db.close()

    def _write_back(self, kind: ContentKind, content_id: str, record: AnalysisRecord) -> None:
        db = self.session_factory()
        try:
            ContentAccessor(db).write_back(kind, content_id, record)
        finally:
            db.close()

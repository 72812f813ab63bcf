"""Job dispatcher: the entry point for content analysis.

Submissions are validated, recorded as a pending job row, and then either
published to the broker or processed inline in the calling task. Which of
the two happens is decided once, when the dispatcher is built.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import structlog
from sqlalchemy.orm import Session

from processor.broker import PRIORITIES, BrokerGateway, connect_broker
from processor.config import ProcessorSettings, settings
from processor.processors.analyze import AnalyzeContentProcessor
from processor.queue_manager import AnalysisJob, AnalysisQueueManager
from processor.records import AnalysisRecord, ContentKind, JobStatus
from processor.services.content_accessor import (
    ContentAccessor,
    ContentNotFoundError,
    InvalidContentError,
    parse_content_kind,
)
from processor.services.model_client import AnalysisRequest, create_model_client
from processor.services.status_reporter import JobStatusReporter
from processor.worker import SingleFlightQueue

logger = structlog.get_logger()

MODE_BROKER = "broker"
MODE_INLINE = "inline"


@dataclass
class JobHandle:
    """Acknowledgement for a submitted job."""

    job_id: int
    content_kind: ContentKind
    content_id: str
    status: JobStatus
    mode: str
    task_id: Optional[str] = None

    @property
    def message(self) -> str:
        return f"Analysis job {self.job_id} for {self.content_kind.value} {self.content_id} is {self.status.value}"


class JobDispatcher:
    """Submits analysis jobs and answers status queries."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        model_queue: SingleFlightQueue,
        broker: Optional[BrokerGateway] = None,
    ):
        self.session_factory = session_factory
        self.model_queue = model_queue
        self.broker = broker
        self.processor = AnalyzeContentProcessor(session_factory, model_queue)
        self.reporter = JobStatusReporter(session_factory)

    @property
    def mode(self) -> str:
        return MODE_BROKER if self.broker is not None else MODE_INLINE

    async def submit(
        self,
        content_kind: ContentKind,
        content_id: str,
        priority: str = "normal",
    ) -> JobHandle:
        """Submit content for analysis.

        Invalid input is rejected before a job row exists. After that, every
        failure is recorded on the row and nothing is raised.

        Raises:
            InvalidContentError: If the kind or priority is unknown
            ContentNotFoundError: If the content row does not exist
        """
        kind = parse_content_kind(content_kind)
        content_id = str(content_id)
        if priority not in PRIORITIES:
            raise InvalidContentError(f"Invalid priority: {priority}")

        content = await asyncio.to_thread(self._fetch_content, kind, content_id)
        if content is None:
            raise ContentNotFoundError(kind.value, content_id)

        job_id = await asyncio.to_thread(self._with_queue, lambda q: q.enqueue(kind, content_id))

        if self.broker is not None:
            return await self._publish(job_id, kind, content_id, priority)

        try:
            record = await self.processor.process(job_id, kind, content_id)
            if record is not None:
                status = JobStatus.COMPLETED
            else:
                job = await asyncio.to_thread(self._with_queue, lambda q: q.get(job_id))
                status = job.status if job is not None else JobStatus.FAILED
        except Exception as e:
            # Already recorded as failed by the processor
            logger.warning("Inline analysis failed", job_id=job_id, error=str(e))
            status = JobStatus.FAILED

        return JobHandle(job_id, kind, content_id, status, self.mode)

    async def get_status(self, content_kind: ContentKind, content_id: str) -> Optional[AnalysisJob]:
        """Get the most recent job for a piece of content. Never blocks on processing."""
        kind = parse_content_kind(content_kind)
        return await asyncio.to_thread(self._with_queue, lambda q: q.get_latest(kind, str(content_id)))

    async def analyze_draft(self, content_kind: ContentKind, content: Mapping[str, Any]) -> AnalysisRecord:
        """Analyze unsaved content without creating a job.

        Raises:
            InvalidContentError: If the kind is unknown or no field has a value
        """
        kind = parse_content_kind(content_kind)
        fields = {k: v for k, v in (content or {}).items() if v not in (None, "")}
        if not fields:
            raise InvalidContentError("Draft content has no fields to analyze")

        return await self.model_queue.enqueue(AnalysisRequest(content_kind=kind, content=fields))

    async def queue_status(self) -> Dict[str, Any]:
        """Operator view of job counts, the model queue and the broker."""
        status: Dict[str, Any] = {
            "queue_status": await asyncio.to_thread(self.reporter.summarize),
            "model_queue": self.model_queue.status(),
            "mode": self.mode,
            "broker_history": None,
        }
        if self.broker is not None:
            status["broker_history"] = await asyncio.to_thread(self.broker.history)
        return status

    def clear_queue(self) -> int:
        """Reject every waiting model request."""
        return self.model_queue.clear()

    async def close(self) -> None:
        await self.model_queue.close()

    async def _publish(self, job_id: int, kind: ContentKind, content_id: str, priority: str) -> JobHandle:
        try:
            task_id = await asyncio.to_thread(self.broker.publish, job_id, kind.value, content_id, priority)
        except Exception as e:
            logger.error("Failed to publish analysis job", job_id=job_id, error=str(e))
            try:
                await asyncio.to_thread(
                    self._with_queue,
                    lambda q: q.fail(job_id, f"Failed to publish job: {e}"),
                )
            except Exception as record_error:
                logger.error("Failed to record publish failure", job_id=job_id, error=str(record_error))
            return JobHandle(job_id, kind, content_id, JobStatus.FAILED, self.mode)

        return JobHandle(job_id, kind, content_id, JobStatus.PENDING, self.mode, task_id=task_id)

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


def create_dispatcher(
    session_factory: Callable[[], Session],
    config: Optional[ProcessorSettings] = None,
) -> JobDispatcher:
    """Build a dispatcher from settings, choosing broker or inline mode."""
    config = config or settings
    model_client = create_model_client(config)
    model_queue = SingleFlightQueue(model_client.handle, cooldown=config.MODEL_QUEUE_COOLDOWN)
    broker = connect_broker(config)

    dispatcher = JobDispatcher(session_factory, model_queue, broker=broker)
    logger.info("Job dispatcher ready", mode=dispatcher.mode)
    return dispatcher

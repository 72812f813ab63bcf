"""Celery broker integration for analysis jobs.

Jobs are published to a Redis-backed Celery queue and executed by a worker
process (see processor.main). Each execution outcome is appended to a short
Redis history list so operators can inspect recent completions and failures.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis
import structlog
from celery import Celery, Task

from processor.config import ProcessorSettings, settings
from processor.database import SessionLocal
from processor.processors.analyze import AnalyzeContentProcessor
from processor.services.model_client import create_model_client
from processor.worker import SingleFlightQueue

logger = structlog.get_logger()

# Lower value is served first by the Redis transport
PRIORITIES = {"high": 1, "normal": 2, "low": 3}

celery_app = Celery("dua_analysis", broker=settings.BROKER_URL or None)

celery_app.conf.update(
    task_default_queue=settings.BROKER_QUEUE_NAME,
    task_ignore_result=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=1,
    broker_transport_options={
        "priority_steps": list(PRIORITIES.values()),
        "queue_order_strategy": "priority",
    },
    enable_utc=True,
    timezone="UTC",
)


class ExecutionHistory:
    """Bounded lists of recent job executions kept in Redis."""

    def __init__(
        self,
        client: "redis.Redis",
        queue_name: str,
        keep_completed: int = 10,
        keep_failed: int = 5,
    ):
        self.client = client
        self.keys = {
            "completed": f"{queue_name}:history:completed",
            "failed": f"{queue_name}:history:failed",
        }
        self.limits = {"completed": keep_completed, "failed": keep_failed}

    @classmethod
    def from_settings(cls, config: Optional[ProcessorSettings] = None) -> "ExecutionHistory":
        config = config or settings
        client = redis.Redis.from_url(config.BROKER_URL, decode_responses=True)
        return cls(
            client,
            config.BROKER_QUEUE_NAME,
            keep_completed=config.BROKER_KEEP_COMPLETED,
            keep_failed=config.BROKER_KEEP_FAILED,
        )

    def record(self, outcome: str, entry: Dict[str, Any]) -> None:
        """Push an entry onto the completed or failed list and trim it."""
        key = self.keys[outcome]
        entry = {**entry, "finished_at": datetime.now(timezone.utc).isoformat()}
        try:
            pipe = self.client.pipeline()
            pipe.lpush(key, json.dumps(entry, ensure_ascii=False))
            pipe.ltrim(key, 0, self.limits[outcome] - 1)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning("Failed to record job history", outcome=outcome, error=str(e))

    def recent(self) -> Dict[str, List[Dict[str, Any]]]:
        """Get retained executions, newest first."""
        history: Dict[str, List[Dict[str, Any]]] = {}
        for outcome, key in self.keys.items():
            try:
                history[outcome] = [json.loads(item) for item in self.client.lrange(key, 0, -1)]
            except redis.RedisError as e:
                logger.warning("Failed to read job history", outcome=outcome, error=str(e))
                history[outcome] = []
        return history


class AnalysisTask(Task):
    """Task base holding the resources of one worker process.

    Celery builds a single instance of each task per process, so the model
    queue kept here spaces model requests across consecutive jobs.
    """

    _model_queue: Optional[SingleFlightQueue] = None
    _history: Optional[ExecutionHistory] = None

    @property
    def model_queue(self) -> SingleFlightQueue:
        if self._model_queue is None:
            self._model_queue = SingleFlightQueue(
                create_model_client().handle,
                cooldown=settings.MODEL_QUEUE_COOLDOWN,
            )
        return self._model_queue

    @property
    def execution_history(self) -> ExecutionHistory:
        if self._history is None:
            self._history = ExecutionHistory.from_settings()
        return self._history


async def _run_job(
    queue: SingleFlightQueue,
    job_id: int,
    content_kind: str,
    content_id: str,
    final_attempt: bool,
) -> Dict[str, Any]:
    processor = AnalyzeContentProcessor(SessionLocal, queue)
    try:
        record = await processor.process(job_id, content_kind, content_id, final_attempt=final_attempt)
    finally:
        # The channel is bound to this event loop
        await queue.close()
    if record is None:
        return {"skipped": True}
    return {"source": record.source, "confidence": record.confidence}


@celery_app.task(
    bind=True,
    base=AnalysisTask,
    name="analysis.analyze_content",
    max_retries=settings.QUEUE_MAX_ATTEMPTS - 1,
)
def analyze_content(self, job_id: int, content_kind: str, content_id: str) -> Dict[str, Any]:
    """Run one analysis job, retrying with exponential backoff."""
    attempt = self.request.retries + 1
    final_attempt = self.request.retries >= self.max_retries
    entry = {
        "job_id": job_id,
        "content_kind": content_kind,
        "content_id": content_id,
        "attempts": attempt,
    }

    try:
        outcome = asyncio.run(_run_job(self.model_queue, job_id, content_kind, content_id, final_attempt))
    except Exception as exc:
        if final_attempt:
            self.execution_history.record("failed", {**entry, "error": str(exc)})
            raise

        countdown = settings.QUEUE_RETRY_BASE_DELAY * (2 ** self.request.retries)
        logger.warning(
            "Analysis job will retry",
            job_id=job_id,
            attempt=attempt,
            countdown=countdown,
            error=str(exc),
        )
        raise self.retry(exc=exc, countdown=countdown)

    self.execution_history.record("completed", {**entry, **outcome})
    return {"job_id": job_id, **outcome}


class BrokerGateway:
    """Publishes analysis jobs and exposes broker state to the dispatcher."""

    def __init__(
        self,
        app: Celery = celery_app,
        history: Optional[ExecutionHistory] = None,
        config: Optional[ProcessorSettings] = None,
    ):
        self.app = app
        self.config = config or settings
        self._history = history

    def is_reachable(self) -> bool:
        """Check the broker connection once, without long retry loops."""
        try:
            with self.app.connection_for_write() as conn:
                conn.ensure_connection(max_retries=1)
            return True
        except Exception as e:
            logger.warning("Broker unreachable", error=str(e))
            return False

    def publish(self, job_id: int, content_kind: str, content_id: str, priority: str = "normal") -> str:
        """Publish a job for the worker.

        Returns:
            Broker task ID

        Raises:
            KeyError: If priority is unknown
            Exception: If the broker rejects the message
        """
        result = analyze_content.apply_async(
            kwargs={"job_id": job_id, "content_kind": content_kind, "content_id": content_id},
            priority=PRIORITIES[priority],
            queue=self.config.BROKER_QUEUE_NAME,
        )
        logger.info(
            "Analysis job published",
            job_id=job_id,
            task_id=result.id,
            priority=priority,
        )
        return result.id

    def history(self) -> Dict[str, List[Dict[str, Any]]]:
        if self._history is None:
            self._history = ExecutionHistory.from_settings(self.config)
        return self._history.recent()


def connect_broker(config: Optional[ProcessorSettings] = None) -> Optional[BrokerGateway]:
    """Get a gateway when a broker is configured and reachable, else None."""
    config = config or settings
    if not config.BROKER_URL:
        logger.info("No broker configured, using inline processing")
        return None

    gateway = BrokerGateway(config=config)
    if not gateway.is_reachable():
        logger.warning("Broker configured but unreachable, using inline processing")
        return None

    return gateway

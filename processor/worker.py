"""Single-flight worker for outbound model requests."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from processor.records import AnalysisRecord
from processor.services.model_client import AnalysisRequest

logger = structlog.get_logger()


class QueueClearedError(Exception):
    """Raised for requests that were still waiting when the queue was cleared."""

    pass


@dataclass
class _QueuedRequest:
    request: AnalysisRequest
    future: "asyncio.Future[AnalysisRecord]"


class SingleFlightQueue:
    """Serializes model requests so at most one is in flight per process.

    Requests go into a channel consumed by a single worker loop in FIFO
    order. After each request finishes, the worker waits ``cooldown`` seconds
    before starting the next one to stay under the remote rate limit.
    """

    def __init__(
        self,
        handler: Callable[[AnalysisRequest], Awaitable[AnalysisRecord]],
        cooldown: float = 1.0,
    ):
        """Initialize the queue.

        Args:
            handler: Coroutine that performs one model request
            cooldown: Minimum seconds between the end of one request and the start of the next
        """
        self.handler = handler
        self.cooldown = cooldown
        self._channel: Optional["asyncio.Queue[_QueuedRequest]"] = None
        self._worker: Optional[asyncio.Task] = None
        self._current: Optional[_QueuedRequest] = None
        self._last_finished: Optional[float] = None

    async def enqueue(self, request: AnalysisRequest) -> AnalysisRecord:
        """Queue a request and wait for its result.

        Raises:
            QueueClearedError: If the queue is cleared before the request starts
            Exception: Whatever the handler raised for this request
        """
        self._ensure_worker()
        loop = asyncio.get_running_loop()
        item = _QueuedRequest(request=request, future=loop.create_future())
        self._channel.put_nowait(item)

        logger.debug(
            "Model request queued",
            content_kind=request.content_kind.value,
            queue_depth=self._channel.qsize(),
        )
        return await item.future

    def status(self) -> dict:
        """Snapshot for operators."""
        current = None
        if self._current is not None:
            current = {
                "content_kind": self._current.request.content_kind.value,
                "enqueued_at": self._current.request.enqueued_at.isoformat(),
            }
        return {
            "is_busy": self._current is not None,
            "queue_depth": self._channel.qsize() if self._channel else 0,
            "current_request": current,
        }

    def clear(self) -> int:
        """Reject every waiting request. The in-flight request keeps running.

        Returns:
            Number of requests rejected
        """
        if self._channel is None:
            return 0

        rejected = 0
        while not self._channel.empty():
            item = self._channel.get_nowait()
            self._channel.task_done()
            if not item.future.done():
                item.future.set_exception(QueueClearedError("Queue cleared"))
            rejected += 1

        if rejected:
            logger.warning("Model queue cleared", rejected=rejected)
        return rejected

    async def close(self) -> None:
        """Stop the worker loop and reject anything still waiting."""
        self.clear()
        current = self._current
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            if current is not None and not current.future.done():
                current.future.set_exception(QueueClearedError("Queue closed"))
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._channel = None

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            if self._channel is None:
                self._channel = asyncio.Queue()
            self._worker = asyncio.create_task(self._run(), name="single-flight-worker")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            # Cool down before taking the next item so it stays clearable meanwhile
            if self._last_finished is not None:
                wait = self._last_finished + self.cooldown - loop.time()
                if wait > 0:
                    await asyncio.sleep(wait)

            item = await self._channel.get()
            if item.future.done():
                # Caller went away before we got to it
                self._channel.task_done()
                continue

            self._current = item
            try:
                logger.info(
                    "Processing model request",
                    content_kind=item.request.content_kind.value,
                    remaining=self._channel.qsize(),
                )
                result = await self.handler(item.request)
            except Exception as e:
                logger.error("Model request failed", error=str(e))
                if not item.future.done():
                    item.future.set_exception(e)
            else:
                if not item.future.done():
                    item.future.set_result(result)
            finally:
                self._current = None
                self._last_finished = loop.time()
                self._channel.task_done()

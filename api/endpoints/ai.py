"""Content analysis endpoints."""

from typing import Optional

import structlog
from fastapi import APIRouter, Body, Depends, Request

from api.middleware.error_handler import NotFoundError
from api.schemas.analysis import (
    AnalysisStatusResponse,
    AnalyzeRequest,
    ClearQueueResponse,
    DraftAnalysisRequest,
    DraftAnalysisResponse,
    JobAcknowledgement,
    QueueStatusResponse,
)
from api.schemas.base import ErrorResponse
from processor.dispatcher import JobDispatcher
from processor.records import ContentKind, JobStatus

logger = structlog.get_logger()
router = APIRouter()


def get_dispatcher(request: Request) -> JobDispatcher:
    """Dispatcher built at startup."""
    return request.app.state.dispatcher


@router.post(
    "/analyze/{content_kind}/{content_id}",
    response_model=JobAcknowledgement,
    status_code=202,
    responses={404: {"model": ErrorResponse}},
)
async def submit_analysis(
    content_kind: ContentKind,
    content_id: str,
    data: Optional[AnalyzeRequest] = Body(None),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """Submit stored content for analysis.

    In inline mode the analysis has already finished when this returns;
    in broker mode the job is pending on the worker queue.
    """
    priority = data.priority if data else "normal"
    handle = await dispatcher.submit(content_kind, content_id, priority=priority)

    return JobAcknowledgement(
        job_id=handle.job_id,
        content_kind=handle.content_kind,
        content_id=handle.content_id,
        status=handle.status,
        mode=handle.mode,
        message=handle.message,
        task_id=handle.task_id,
    )


@router.get(
    "/analysis/{content_kind}/{content_id}",
    response_model=AnalysisStatusResponse,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}},
)
async def get_analysis(
    content_kind: ContentKind,
    content_id: str,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """Get the latest analysis state for a piece of content."""
    job = await dispatcher.get_status(content_kind, content_id)
    if job is None:
        raise NotFoundError("Analysis", f"{content_kind.value}:{content_id}")

    response = AnalysisStatusResponse(
        job_id=job.id,
        status=job.status,
        created_at=job.created_at,
        processed_at=job.processed_at,
    )
    if job.status == JobStatus.COMPLETED and job.result is not None:
        response.analysis = job.result.to_dict()
    elif job.status == JobStatus.FAILED:
        response.error = job.error_message or "Analysis failed"

    return response


@router.post("/analyze-draft", response_model=DraftAnalysisResponse)
async def analyze_draft(
    data: DraftAnalysisRequest,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """Analyze unsaved content. Nothing is persisted."""
    record = await dispatcher.analyze_draft(data.content_kind, data.content)

    logger.info(
        "Draft analyzed",
        content_kind=data.content_kind.value,
        source=record.source,
        confidence=record.confidence,
    )

    return DraftAnalysisResponse(analysis=record.to_dict())


@router.get("/queue/status", response_model=QueueStatusResponse)
async def get_queue_status(
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """Get job counts, the model queue state and recent broker executions."""
    return QueueStatusResponse.model_validate(await dispatcher.queue_status())


@router.delete("/queue", response_model=ClearQueueResponse)
async def clear_queue(
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """Reject every model request still waiting. The in-flight request continues."""
    rejected = dispatcher.clear_queue()

    logger.info("Model queue cleared via API", rejected=rejected)

    return ClearQueueResponse(
        rejected=rejected,
        message=f"Rejected {rejected} waiting request(s)",
    )

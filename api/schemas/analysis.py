"""Pydantic schemas for content analysis endpoints."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import field_validator

from processor.records import ContentKind, JobStatus

from .base import CamelModel


class AnalyzeRequest(CamelModel):
    """Optional body for submitting content."""

    priority: Literal["high", "normal", "low"] = "normal"


class JobAcknowledgement(CamelModel):
    """Response for an accepted submission."""

    job_id: int
    content_kind: ContentKind
    content_id: str
    status: JobStatus
    mode: str
    message: str
    task_id: Optional[str] = None


class AnalysisStatusResponse(CamelModel):
    """Latest job state for a piece of content."""

    job_id: int
    status: JobStatus
    analysis: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class DraftAnalysisRequest(CamelModel):
    """Unsaved content to analyze without creating a job."""

    content_kind: ContentKind
    content: dict[str, Optional[str]]

    @field_validator("content")
    @classmethod
    def content_has_values(cls, v: dict[str, Optional[str]]) -> dict[str, Optional[str]]:
        """Require at least one non-empty field."""
        if not any(value and value.strip() for value in v.values()):
            raise ValueError("Content must have at least one non-empty field")
        return v


class DraftAnalysisResponse(CamelModel):
    """Analysis of draft content."""

    status: Literal["completed"] = "completed"
    analysis: dict[str, Any]


class CurrentRequest(CamelModel):
    content_kind: ContentKind
    enqueued_at: datetime


class ModelQueueStatus(CamelModel):
    """Single-flight model queue snapshot."""

    is_busy: bool
    queue_depth: int
    current_request: Optional[CurrentRequest] = None


class QueueStatusResponse(CamelModel):
    """Operator view of the analysis pipeline."""

    queue_status: dict[str, dict[str, int]]
    model_queue: ModelQueueStatus
    mode: str
    broker_history: Optional[dict[str, list[dict[str, Any]]]] = None


class ClearQueueResponse(CamelModel):
    """Result of clearing the model queue."""

    rejected: int
    message: str

"""Pydantic schemas for API request/response validation.

All schemas use CamelCase for JSON field names (via alias_generator).
"""

from .base import CamelModel, ErrorResponse
from .analysis import (
    AnalysisStatusResponse,
    AnalyzeRequest,
    ClearQueueResponse,
    DraftAnalysisRequest,
    DraftAnalysisResponse,
    JobAcknowledgement,
    ModelQueueStatus,
    QueueStatusResponse,
)

__all__ = [
    # Base
    "CamelModel",
    "ErrorResponse",
    # Analysis
    "AnalysisStatusResponse",
    "AnalyzeRequest",
    "ClearQueueResponse",
    "DraftAnalysisRequest",
    "DraftAnalysisResponse",
    "JobAcknowledgement",
    "ModelQueueStatus",
    "QueueStatusResponse",
]

"""Analysis job model for the AI processing queue."""

from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from sqlalchemy import func

from api.config.database import Base


class AnalysisJob(Base):
    """
    One content-analysis request.

    Rows are created when content is authored or analysis is requested,
    mutated only by the job dispatcher, and never deleted by the pipeline.
    Duplicate rows for the same content are tolerated; readers use the newest.
    """

    __tablename__ = "ai_processing_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # dua, blog, question, answer
    content_type = Column(String(50), nullable=False)
    content_id = Column(String(64), nullable=False)

    # pending, processing, completed, failed (forward-only)
    status = Column(String(20), nullable=False, default="pending", server_default="pending")

    # JSON analysis record (completed only)
    result = Column(Text, nullable=True)
    # Captured failure message (failed only)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_ai_queue_status", "status"),
        Index("idx_ai_queue_content", "content_type", "content_id"),
    )

    def __repr__(self) -> str:
        return f"<AnalysisJob(id={self.id}, content={self.content_type}:{self.content_id}, status={self.status})>"

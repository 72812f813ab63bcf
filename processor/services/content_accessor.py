"""Data access for the content being analyzed."""

import json
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.orm import Session

from processor.records import AnalysisRecord, ContentKind

logger = structlog.get_logger()


class InvalidContentError(ValueError):
    """Unknown content kind."""

    pass


class ContentNotFoundError(LookupError):
    """No content row for the given kind and id."""

    def __init__(self, content_kind: str, content_id: str):
        self.content_kind = content_kind
        self.content_id = content_id
        super().__init__(f"Content not found: {content_kind}:{content_id}")


# Columns relevant to analysis per content kind
CONTENT_QUERIES = {
    ContentKind.DUA: """
        SELECT title, purpose, arabic_text, english_meaning, transliteration,
               native_meaning, source_reference
        FROM duas WHERE id = :content_id
    """,
    ContentKind.BLOG: "SELECT title, content FROM blogs WHERE id = :content_id",
    ContentKind.QUESTION: "SELECT title, content FROM questions WHERE id = :content_id",
    ContentKind.ANSWER: "SELECT content FROM answers WHERE id = :content_id",
}

WRITE_BACK_QUERIES = {
    ContentKind.DUA: """
        UPDATE duas SET ai_summary = :summary, ai_corrections = :corrections
        WHERE id = :content_id
    """,
    ContentKind.BLOG: "UPDATE blogs SET ai_summary = :summary WHERE id = :content_id",
    ContentKind.QUESTION: "UPDATE questions SET ai_summary = :summary WHERE id = :content_id",
    ContentKind.ANSWER: "UPDATE answers SET ai_summary = :summary WHERE id = :content_id",
}


def parse_content_kind(value: Any) -> ContentKind:
    """Validate a content kind coming from outside.

    Raises:
        InvalidContentError: If the value is not a known kind
    """
    try:
        return ContentKind(value)
    except ValueError as e:
        raise InvalidContentError(f"Invalid content type: {value}") from e


class ContentAccessor:
    """Reads analysis input from, and writes summaries back to, content tables."""

    def __init__(self, db: Session):
        self.db = db

    def fetch(self, content_kind: ContentKind, content_id: str) -> Optional[Dict[str, Any]]:
        """Get the analysis-relevant fields, or None if the row does not exist."""
        kind = parse_content_kind(content_kind)
        result = self.db.execute(text(CONTENT_QUERIES[kind]), {"content_id": str(content_id)})
        row = result.mappings().fetchone()
        return dict(row) if row else None

    def write_back(self, content_kind: ContentKind, content_id: str, record: AnalysisRecord) -> None:
        """Copy summary (and corrections for duas) onto the content row."""
        kind = parse_content_kind(content_kind)
        data = record.to_dict()
        params = {
            "content_id": str(content_id),
            "summary": json.dumps(data["summary"], ensure_ascii=False),
        }
        if kind == ContentKind.DUA:
            params["corrections"] = json.dumps(data["corrections"], ensure_ascii=False)

        self.db.execute(text(WRITE_BACK_QUERIES[kind]), params)
        self.db.commit()

        logger.info("Analysis written back to content", content_kind=kind.value, content_id=content_id)

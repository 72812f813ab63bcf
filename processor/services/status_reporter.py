"""Per-content-kind job status counts."""

from typing import Callable, Dict

import structlog
from sqlalchemy import text
from sqlalchemy.orm import Session

from processor.records import ContentKind, JobStatus

logger = structlog.get_logger()


class JobStatusReporter:
    """Aggregates ai_processing_queue rows for operators. Always a live query."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def summarize(self) -> Dict[str, Dict[str, int]]:
        """Get status counts grouped by content kind.

        Every known kind and status is present, with zero for missing groups.
        """
        query = text("""
            SELECT content_type, status, COUNT(*) AS count
            FROM ai_processing_queue
            GROUP BY content_type, status
        """)

        summary = {
            kind.value: {status.value: 0 for status in JobStatus}
            for kind in ContentKind
        }

        db = self.session_factory()
        try:
            for row in db.execute(query):
                summary.setdefault(row.content_type, {})[row.status] = row.count
        finally:
            db.close()

        return summary

"""SQLAlchemy ORM models for the content analysis pipeline.

All models are imported here to ensure they're registered with Base.metadata
before any database operations.
"""

# Import base first
from api.config.database import Base

# Content models
from .content import Dua, Blog, Question, Answer

# Queue model
from .jobs import AnalysisJob

__all__ = [
    "Base",
    # Content
    "Dua",
    "Blog",
    "Question",
    "Answer",
    # Queue
    "AnalysisJob",
]

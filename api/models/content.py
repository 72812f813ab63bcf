"""Content tables the analysis pipeline reads from and writes back to.

Only the columns the pipeline touches are mapped here; authoring,
approval and ownership columns belong to the content endpoints.
"""

import uuid

from sqlalchemy import Column, String, Text

from api.models.base import BaseModel


def _new_id() -> str:
    return str(uuid.uuid4())


class Dua(BaseModel):
    """Supplication with Arabic text, transliteration and translations."""

    __tablename__ = "duas"

    id = Column(String(64), primary_key=True, default=_new_id)
    title = Column(String(255), nullable=True)
    purpose = Column(Text, nullable=True)
    arabic_text = Column(Text, nullable=True)
    english_meaning = Column(Text, nullable=True)
    transliteration = Column(Text, nullable=True)
    native_meaning = Column(Text, nullable=True)
    source_reference = Column(Text, nullable=True)

    # Denormalized copy of the latest analysis (JSON)
    ai_summary = Column(Text, nullable=True)
    ai_corrections = Column(Text, nullable=True)


class Blog(BaseModel):
    """Blog post."""

    __tablename__ = "blogs"

    id = Column(String(64), primary_key=True, default=_new_id)
    title = Column(String(255), nullable=True)
    content = Column(Text, nullable=True)
    ai_summary = Column(Text, nullable=True)


class Question(BaseModel):
    """Question asked to scholars."""

    __tablename__ = "questions"

    id = Column(String(64), primary_key=True, default=_new_id)
    title = Column(String(255), nullable=True)
    content = Column(Text, nullable=True)
    ai_summary = Column(Text, nullable=True)


class Answer(BaseModel):
    """Scholar answer to a question."""

    __tablename__ = "answers"

    id = Column(String(64), primary_key=True, default=_new_id)
    content = Column(Text, nullable=True)
    ai_summary = Column(Text, nullable=True)

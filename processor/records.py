"""Normalized analysis results shared by every tier of the pipeline."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ContentKind(str, Enum):
    """Content categories that can be analyzed."""

    DUA = "dua"
    BLOG = "blog"
    QUESTION = "question"
    ANSWER = "answer"


class JobStatus(str, Enum):
    """Lifecycle of an analysis job. Transitions only move forward."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Tier tags
SOURCE_PRIMARY = "primary_model"
SOURCE_SECONDARY = "secondary_model"
SOURCE_LOCAL = "local_fallback"


@dataclass
class BilingualText:
    """English/Bangla text pair."""

    english: str = ""
    bangla: str = ""


@dataclass
class Correction:
    """One structured correction suggested by a model."""

    field: str = "unknown"
    issue_english: str = ""
    issue_bangla: str = ""
    suggestion_english: str = ""
    suggestion_bangla: str = ""


Text = Union[BilingualText, str]


@dataclass
class AnalysisRecord:
    """Normalized analysis output.

    Remote tiers produce bilingual summaries and structured corrections;
    fallback paths may produce plain strings instead.
    """

    summary: Text = ""
    corrections: List[Union[Correction, str]] = field(default_factory=list)
    authenticity: Optional[Text] = None
    confidence: float = 0.0
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        data: Dict[str, Any] = {
            "summary": _text_to_json(self.summary),
            "corrections": [
                asdict(c) if isinstance(c, Correction) else c
                for c in self.corrections
            ],
            "confidence": self.confidence,
        }
        if self.authenticity is not None:
            data["authenticity"] = _text_to_json(self.authenticity)
        if self.source is not None:
            data["source"] = self.source
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisRecord":
        """Rebuild a record from its stored dictionary form."""
        corrections: List[Union[Correction, str]] = []
        for item in data.get("corrections") or []:
            if isinstance(item, dict):
                corrections.append(
                    Correction(**{k: str(v) for k, v in item.items() if k in Correction.__dataclass_fields__})
                )
            else:
                corrections.append(str(item))

        authenticity = data.get("authenticity")
        return cls(
            summary=_text_from_json(data.get("summary", "")),
            corrections=corrections,
            authenticity=_text_from_json(authenticity) if authenticity is not None else None,
            confidence=float(data.get("confidence", 0.0)),
            source=data.get("source"),
        )


def _text_to_json(value: Text) -> Any:
    if isinstance(value, BilingualText):
        return asdict(value)
    return value


def _text_from_json(value: Any) -> Text:
    if isinstance(value, dict):
        return BilingualText(
            english=str(value.get("english", "")),
            bangla=str(value.get("bangla", "")),
        )
    return str(value)

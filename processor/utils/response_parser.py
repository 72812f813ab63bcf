"""Recover analysis records from raw model output.

Model output arrives in several states: clean JSON, JSON wrapped in prose,
JSON cut off by the generation budget, or plain text. ``parse_response`` walks
a recovery ladder and always returns an ``AnalysisRecord``:

1. Greedy ``{...}`` span, or the leading complete object, decoded as JSON and
   matched against known shapes
2. Truncated JSON repaired by closing open strings, arrays and objects
3. Line-oriented section parsing for plain text
4. Fixed placeholder asking for manual review (confidence 0.0)
"""

import json
import re
from typing import Any, Callable, List, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from processor.records import AnalysisRecord, BilingualText, Correction

logger = structlog.get_logger()

STRUCTURED_CONFIDENCE = 0.8
REPAIRED_CONFIDENCE = 0.7
TEXT_CONFIDENCE = 0.6
PLACEHOLDER_CONFIDENCE = 0.0

SUMMARY_DEFAULT = BilingualText(
    english="Summary not provided",
    bangla="সারাংশ প্রদান করা হয়নি",
)
CORRECTIONS_DEFAULT = "পরামর্শ প্রদান করা হয়নি"
AUTHENTICITY_DEFAULT = "সত্যতা মূল্যায়ন প্রদান করা হয়নি"
ANALYSIS_COMPLETED = BilingualText(
    english="Content analysis completed",
    bangla="বিষয়বস্তু বিশ্লেষণ সম্পন্ন হয়েছে",
)

PLACEHOLDER_SUMMARY = BilingualText(
    english="Automatic analysis could not be read - manual review recommended",
    bangla="স্বয়ংক্রিয় বিশ্লেষণ পড়া যায়নি - ম্যানুয়াল পর্যালোচনা সুপারিশ করা হচ্ছে",
)
PLACEHOLDER_CORRECTION = "বিস্তারিত বিশ্লেষণ পার্স করতে অক্ষম - ম্যানুয়াল পর্যালোচনা সুপারিশ করা হচ্ছে"
PLACEHOLDER_AUTHENTICITY = BilingualText(
    english="Authenticity not assessed - verification recommended",
    bangla="সত্যতা যাচাই করা হয়নি - যাচাই সুপারিশ করা হচ্ছে",
)

_JSON_SPAN = re.compile(r"\{[\s\S]*\}")
_SECTION_MARKERS = (
    ("summary", re.compile(r"^[#*\s]*(?:\d+[.)]\s*)?summary[*\s]*:?\s*", re.IGNORECASE)),
    ("corrections", re.compile(r"^[#*\s]*(?:\d+[.)]\s*)?corrections?[*\s]*:?\s*", re.IGNORECASE)),
    ("authenticity", re.compile(r"^[#*\s]*(?:\d+[.)]\s*)?authenticity[*\s]*:?\s*", re.IGNORECASE)),
)


class StructuredShape(BaseModel):
    """The shape the prompt asks for: echo block, corrections and summary.

    ``authenticity`` is optional. Rendered records always carry it so a
    record that was never assessed comes back with None.
    """

    model_config = ConfigDict(extra="allow")

    analysis: Any
    corrections: Any
    summary: Any
    authenticity: Any = None


class LegacyShape(BaseModel):
    """Older flat shape where every key is optional."""

    model_config = ConfigDict(extra="allow")

    summary: Any = None
    corrections: Any = None
    authenticity: Any = None
    confidence: Any = None


def parse_response(raw: Any) -> AnalysisRecord:
    """Convert raw model output into a normalized record. Never raises."""
    try:
        text = extract_generated_text(raw)
    except Exception as e:  # noqa: BLE001 - the parser is total
        logger.warning("Unreadable model payload", error=str(e))
        return placeholder_record()

    try:
        record = _parse_json(text)
        if record is not None:
            return record

        record = _parse_sections(text)
        if record is not None:
            return record
    except Exception as e:  # noqa: BLE001 - the parser is total
        logger.warning("Response parsing failed", error=str(e), preview=text[:200])

    logger.warning("No usable analysis in model output", length=len(text))
    return placeholder_record()


def extract_generated_text(raw: Any) -> str:
    """Pull the generated text out of the shapes inference endpoints return."""
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        first = raw[0] if raw else {}
        if isinstance(first, dict):
            return str(first.get("generated_text") or "")
        return str(first)
    if isinstance(raw, dict):
        return str(raw.get("generated_text") or "")
    return str(raw)


def render_response(record: AnalysisRecord) -> str:
    """Render a record in the JSON shape the models are asked to produce.

    ``parse_response`` maps the output back to the same summary, corrections
    and authenticity.
    """
    data = record.to_dict()
    payload = {
        "analysis": {},
        "corrections": data["corrections"],
        "summary": data["summary"],
        "authenticity": data.get("authenticity"),
    }
    return json.dumps(payload, ensure_ascii=False, indent=2)


def placeholder_record() -> AnalysisRecord:
    """Best-effort record used when nothing could be recovered."""
    return AnalysisRecord(
        summary=BilingualText(**vars(PLACEHOLDER_SUMMARY)),
        corrections=[PLACEHOLDER_CORRECTION],
        authenticity=BilingualText(**vars(PLACEHOLDER_AUTHENTICITY)),
        confidence=PLACEHOLDER_CONFIDENCE,
    )


def repair_truncated_json(fragment: str) -> Optional[str]:
    """Close whatever a truncated JSON document left open.

    Walks the fragment with a bracket stack that ignores characters inside
    strings, then closes a dangling string, drops a trailing comma, fills a
    dangling key with ``null`` and appends the missing closers innermost
    first. Returns None when the fragment has mismatched closers.
    """
    stack: List[str] = []
    in_string = False
    escaped = False

    for ch in fragment:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            stack.append("}")
        elif ch == "[":
            stack.append("]")
        elif ch in "}]":
            if not stack or stack[-1] != ch:
                return None
            stack.pop()

    repaired = fragment
    if in_string:
        if escaped:
            repaired = repaired[:-1]
        repaired += '"'

    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1]
    elif repaired.endswith(":"):
        repaired += " null"

    return repaired + "".join(reversed(stack))


def _parse_json(text: str) -> Optional[AnalysisRecord]:
    match = _JSON_SPAN.search(text)
    if match:
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            logger.info("JSON decode failed, attempting repair", error=str(e))
        else:
            return _decode_shapes(data, STRUCTURED_CONFIDENCE)

    start = text.find("{")
    if start == -1:
        return None

    # A complete object followed by prose that contains braces
    try:
        data, end = json.JSONDecoder().raw_decode(text, start)
    except json.JSONDecodeError:
        pass
    else:
        record = _decode_shapes(data, STRUCTURED_CONFIDENCE)
        if record is not None:
            logger.info("Decoded leading JSON object", trailing_length=len(text) - end)
            return record

    repaired = repair_truncated_json(text[start:])
    if repaired is None:
        return None

    try:
        data = json.loads(repaired)
    except json.JSONDecodeError as e:
        logger.info("Truncated JSON could not be repaired", error=str(e))
        return None

    logger.info("Recovered truncated JSON", original_length=len(text) - start)
    return _decode_shapes(data, REPAIRED_CONFIDENCE)


def _decode_shapes(data: Any, max_confidence: float) -> Optional[AnalysisRecord]:
    """Try each known response shape in order of preference."""
    if not isinstance(data, dict):
        return None

    decoders: List[Callable[[dict, float], Optional[AnalysisRecord]]] = [
        _decode_structured,
        _decode_legacy,
    ]
    for decode in decoders:
        record = decode(data, max_confidence)
        if record is not None:
            return record
    return None


def _decode_structured(data: dict, max_confidence: float) -> Optional[AnalysisRecord]:
    try:
        shape = StructuredShape.model_validate(data)
    except ValidationError:
        return None

    if isinstance(shape.summary, str) and shape.summary.strip():
        summary: Union[BilingualText, str] = shape.summary
    else:
        summary = _bilingual_summary(shape.summary)

    # An explicit null authenticity is kept as "not assessed"
    if "authenticity" not in data:
        authenticity: Optional[Union[BilingualText, str]] = BilingualText(**vars(ANALYSIS_COMPLETED))
    elif isinstance(shape.authenticity, dict):
        authenticity = BilingualText(
            english=_text_value(shape.authenticity, "english", ""),
            bangla=_text_value(shape.authenticity, "bangla", ""),
        )
    elif shape.authenticity is not None:
        authenticity = str(shape.authenticity)
    else:
        authenticity = None

    return AnalysisRecord(
        summary=summary,
        corrections=_normalize_corrections(shape.corrections),
        authenticity=authenticity,
        confidence=min(STRUCTURED_CONFIDENCE, max_confidence),
    )


def _decode_legacy(data: dict, max_confidence: float) -> Optional[AnalysisRecord]:
    if not any(key in data for key in LegacyShape.model_fields):
        return None
    shape = LegacyShape.model_validate(data)

    if isinstance(shape.summary, dict):
        summary: Union[BilingualText, str] = _bilingual_summary(shape.summary)
    else:
        summary = str(shape.summary) if shape.summary else SUMMARY_DEFAULT.bangla

    if isinstance(shape.corrections, list):
        corrections = _normalize_corrections(shape.corrections)
    else:
        corrections = [str(shape.corrections) if shape.corrections else CORRECTIONS_DEFAULT]

    if isinstance(shape.authenticity, dict):
        authenticity: Union[BilingualText, str] = BilingualText(
            english=str(shape.authenticity.get("english") or ""),
            bangla=str(shape.authenticity.get("bangla") or ""),
        )
    else:
        authenticity = str(shape.authenticity) if shape.authenticity else AUTHENTICITY_DEFAULT

    return AnalysisRecord(
        summary=summary,
        corrections=corrections,
        authenticity=authenticity,
        confidence=_clamp_confidence(shape.confidence, max_confidence),
    )


def _bilingual_summary(value: Any) -> BilingualText:
    if isinstance(value, dict):
        return BilingualText(
            english=_text_value(value, "english", SUMMARY_DEFAULT.english),
            bangla=_text_value(value, "bangla", SUMMARY_DEFAULT.bangla),
        )
    return BilingualText(**vars(SUMMARY_DEFAULT))


def _text_value(mapping: dict, key: str, default: str) -> str:
    """Read a text field, falling back only when the key is missing or null."""
    value = mapping.get(key)
    return default if value is None else str(value)


def _normalize_corrections(value: Any) -> List[Union[Correction, str]]:
    if not isinstance(value, list):
        return [str(value) if value else CORRECTIONS_DEFAULT]

    corrections: List[Union[Correction, str]] = []
    for item in value:
        if isinstance(item, dict):
            corrections.append(
                Correction(
                    field=_text_value(item, "field", "unknown"),
                    issue_english=_text_value(item, "issue_english", ""),
                    issue_bangla=_text_value(item, "issue_bangla", ""),
                    suggestion_english=_text_value(item, "suggestion_english", ""),
                    suggestion_bangla=_text_value(item, "suggestion_bangla", ""),
                )
            )
        elif item is not None:
            corrections.append(str(item))
    return corrections


def _clamp_confidence(value: Any, max_confidence: float) -> float:
    try:
        confidence = float(value) if value is not None else max_confidence
    except (TypeError, ValueError):
        confidence = max_confidence
    if confidence != confidence:  # NaN
        confidence = max_confidence
    return max(0.0, min(confidence, max_confidence))


def _parse_sections(text: str) -> Optional[AnalysisRecord]:
    """Accumulate lines under summary/corrections/authenticity markers."""
    sections = {"summary": [], "corrections": [], "authenticity": []}
    current: Optional[str] = None

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue

        marker = _match_marker(stripped)
        if marker is not None:
            current, remainder = marker
            if remainder:
                sections[current].append(remainder)
        elif current is not None:
            sections[current].append(stripped)

    if not any(sections.values()):
        return None

    summary = " ".join(sections["summary"]) or SUMMARY_DEFAULT.english
    corrections: List[Union[Correction, str]] = (
        [" ".join(sections["corrections"])] if sections["corrections"] else []
    )
    authenticity = " ".join(sections["authenticity"]) or None

    return AnalysisRecord(
        summary=summary,
        corrections=corrections,
        authenticity=authenticity,
        confidence=TEXT_CONFIDENCE,
    )


def _match_marker(line: str) -> Optional[tuple]:
    """Return (section, remainder) when the line starts a new section."""
    for name, pattern in _SECTION_MARKERS:
        match = pattern.match(line)
        if match:
            return name, line[match.end():].strip()
    return None

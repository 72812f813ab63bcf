"""Rule-based analysis used when no remote model is reachable."""

from typing import Any, Dict, List, Mapping

import structlog

from processor.records import AnalysisRecord, BilingualText, ContentKind, SOURCE_LOCAL

logger = structlog.get_logger()

LOCAL_CONFIDENCE = 0.6

MIN_TITLE_LENGTH = 5
MIN_ARABIC_LENGTH = 10
MIN_MEANING_LENGTH = 20
MIN_BLOG_LENGTH = 100
MIN_POST_LENGTH = 20

# rule id -> suggestion shown to the author
SUGGESTIONS: Dict[str, str] = {
    "missing_title": "শিরোনাম প্রয়োজন - বিষয়বস্তুর জন্য একটি বর্ণনামূলক শিরোনাম যোগ করুন",
    "short_title": "শিরোনামটি আরও বর্ণনামূলক করার কথা বিবেচনা করুন (কমপক্ষে ৫টি অক্ষর)",
    "missing_arabic": "দুআর জন্য আরবি পাঠ প্রয়োজন",
    "short_arabic": "আরবি পাঠ খুব ছোট মনে হচ্ছে। আরও ভালো প্রসঙ্গের জন্য আরও বিষয়বস্তু যোগ করার কথা বিবেচনা করুন",
    "missing_meaning": "দুআর জন্য অর্থ/অনুবাদ গুরুত্বপূর্ণ",
    "short_meaning": "ব্যবহারকারীদের আরও ভালোভাবে বুঝতে সাহায্য করার জন্য অর্থ/অনুবাদ আরও বিস্তারিত হতে পারে",
    "short_blog": "ব্লগ বিষয়বস্তু আরও গুরুত্বপূর্ণ হওয়া উচিত (কমপক্ষে ১০০টি অক্ষর)",
    "short_body": "বিষয়বস্তু খুব ছোট - আরও বিস্তারিত লিখুন (কমপক্ষে ২০টি অক্ষর)",
    "looks_fine": "বিষয়বস্তুর কাঠামো ভালো",
    "add_context": "প্রযোজ্য হলে আরও প্রসঙ্গ বা উদাহরণ যোগ করার কথা বিবেচনা করুন",
}

TITLED_KINDS = (ContentKind.DUA, ContentKind.BLOG, ContentKind.QUESTION)


def find_issues(content_kind: ContentKind, content: Mapping[str, Any]) -> List[str]:
    """Return the ids of every rule the content violates."""
    kind = ContentKind(content_kind)
    issues: List[str] = []

    title = _text(content, "title")
    if kind in TITLED_KINDS:
        if not title:
            issues.append("missing_title")
        elif len(title) < MIN_TITLE_LENGTH:
            issues.append("short_title")

    if kind == ContentKind.DUA:
        arabic = _text(content, "arabic_text")
        if not arabic:
            issues.append("missing_arabic")
        elif len(arabic) < MIN_ARABIC_LENGTH:
            issues.append("short_arabic")

        meaning = _text(content, "english_meaning") or _text(content, "native_meaning")
        if not meaning:
            issues.append("missing_meaning")
        elif len(meaning) < MIN_MEANING_LENGTH:
            issues.append("short_meaning")

    elif kind == ContentKind.BLOG:
        if len(_text(content, "content")) < MIN_BLOG_LENGTH:
            issues.append("short_blog")

    else:
        if len(_text(content, "content")) < MIN_POST_LENGTH:
            issues.append("short_body")

    return issues


def analyze_locally(content_kind: ContentKind, content: Mapping[str, Any]) -> AnalysisRecord:
    """Produce a low-confidence analysis without any network access."""
    kind = ContentKind(content_kind)
    issues = find_issues(kind, content)
    if not issues:
        issues = ["looks_fine", "add_context"]

    logger.info("Local fallback analysis", content_kind=kind.value, issues=issues)

    return AnalysisRecord(
        summary=BilingualText(
            english=f"Basic analysis of {kind.value} content completed using local validation.",
            bangla=f"স্থানীয় যাচাই ব্যবহার করে {kind.value} বিষয়বস্তুর মৌলিক বিশ্লেষণ সম্পন্ন হয়েছে।",
        ),
        corrections=[SUGGESTIONS[issue] for issue in issues],
        authenticity=BilingualText(
            english="Content is formatted correctly. Detailed authenticity checks are unavailable "
            "while the external AI services are unreachable.",
            bangla="বিষয়বস্তু সঠিকভাবে ফরম্যাট করা হয়েছে। বিস্তারিত ইসলামী সত্যতা যাচাইয়ের জন্য, "
            "বাহ্যিক AI পরিষেবা বর্তমানে অনুপলব্ধ।",
        ),
        confidence=LOCAL_CONFIDENCE,
        source=SOURCE_LOCAL,
    )


def _text(content: Mapping[str, Any], key: str) -> str:
    value = content.get(key)
    return str(value).strip() if value else ""

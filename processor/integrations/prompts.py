"""Prompt templates for content analysis."""

import re
from string import Template
from typing import Any, Mapping

from processor.records import ContentKind

NOT_SPECIFIED = "Not specified"

OUTPUT_INSTRUCTIONS = """Check the contents for any issues and provide a summary of the content correction and suggestions.
- Do not use markdown styling, use plain text only.
- Show the output in JSON format. Each correction is one array element.
- Provide Bangla and English for the corrections and suggestions.
- If no correction is needed the corrections array must be empty.
- Here is a sample output structure:

{{
  "analysis": {echo_example},
  "corrections": [
    {{
      "field": "title",
      "issue_english": "Descriptive, not standard for a du'a.",
      "issue_bangla": "বর্ণনমূলক, একটি দু'য়ার জন্য আদর্শ নয়।",
      "suggestion_english": "Du'a for Protection from Hellfire",
      "suggestion_bangla": "জাহান্নাম থেকে সুরক্ষার জন্য দু'আ"
    }}
  ],
  "summary": {{
    "english": "The provided content contains several inaccuracies. Corrections include a better title and a source reference.",
    "bangla": "প্রদত্ত অংশে বেশ কিছু ভুল রয়েছে। সংশোধনগুলির মধ্যে একটি ভাল শিরোনাম এবং উৎস উল্লেখ অন্তর্ভুক্ত।"
  }}
}}

output:"""

DUA_ANALYSIS_TEMPLATE = """Content to analyze:
Title: {title}
Purpose: {purpose}
Arabic Text: {arabic_text}
English Meaning: {english_meaning}
Transliteration: {transliteration}
Native Meaning: {native_meaning}
Source Reference: {source_reference}

""" + OUTPUT_INSTRUCTIONS.replace(
    "{echo_example}",
    """{{
    "title": "...",
    "purpose": "...",
    "arabic_text": "...",
    "english_meaning": "...",
    "transliteration": "...",
    "native_meaning": "...",
    "source_reference": "..."
  }}""",
)

TEXT_ANALYSIS_TEMPLATE = """Content to analyze ({content_kind}):
Title: {title}
Content: {content}

""" + OUTPUT_INSTRUCTIONS.replace(
    "{echo_example}",
    """{{
    "title": "...",
    "content": "..."
  }}""",
)

DUA_FIELDS = (
    "title",
    "purpose",
    "arabic_text",
    "english_meaning",
    "transliteration",
    "native_meaning",
)


def safe_template_substitute(template: str, **kwargs) -> str:
    """Substitute {name} placeholders without tripping over braces in user content.

    ``{{`` and ``}}`` are kept as literal braces.
    """
    converted = template.replace("{{", "__DOUBLE_OPEN__").replace("}}", "__DOUBLE_CLOSE__")
    converted = re.sub(r"\{(\w+)\}", r"${\1}", converted)
    converted = converted.replace("$", "$$").replace("$${", "${")
    converted = converted.replace("__DOUBLE_OPEN__", "{").replace("__DOUBLE_CLOSE__", "}")
    return Template(converted).safe_substitute(**kwargs)


def build_prompt(content_kind: ContentKind, content: Mapping[str, Any]) -> str:
    """Build the deterministic analysis prompt for one piece of content."""
    kind = ContentKind(content_kind)

    if kind == ContentKind.DUA:
        values = {name: _field(content, name) for name in DUA_FIELDS}
        values["source_reference"] = _field(content, "source_reference", default="N/A")
        return safe_template_substitute(DUA_ANALYSIS_TEMPLATE, **values)

    return safe_template_substitute(
        TEXT_ANALYSIS_TEMPLATE,
        content_kind=kind.value,
        title=_field(content, "title"),
        content=_field(content, "content"),
    )


def _field(content: Mapping[str, Any], name: str, default: str = NOT_SPECIFIED) -> str:
    value = content.get(name)
    if value is None or not str(value).strip():
        return default
    return str(value)

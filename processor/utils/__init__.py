"""Processor utilities."""

from .local_analyzer import analyze_locally, find_issues
from .response_parser import parse_response, render_response, repair_truncated_json

__all__ = [
    "analyze_locally",
    "find_issues",
    "parse_response",
    "render_response",
    "repair_truncated_json",
]

"""Tiered content analysis: primary model, secondary model, local rules."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import structlog

from processor.config import ProcessorSettings
from processor.integrations.inference import (
    ModelUnavailableError,
    PrimaryModelClient,
    SecondaryModelClient,
)
from processor.integrations.prompts import build_prompt
from processor.records import AnalysisRecord, ContentKind, SOURCE_PRIMARY, SOURCE_SECONDARY
from processor.utils.local_analyzer import analyze_locally
from processor.utils.response_parser import parse_response

logger = structlog.get_logger()


class TextGenerator(Protocol):
    """Anything that turns a prompt into raw model output."""

    name: str

    async def generate(self, prompt: str) -> Any:
        ...


@dataclass
class AnalysisRequest:
    """One piece of content waiting for analysis."""

    content_kind: ContentKind
    content: Dict[str, Any]
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class TieredModelClient:
    """Runs the fallback chain for one analysis.

    Only availability failures move to the next tier. A model that answers
    with unusable text is handled by the response parser, never escalated.
    """

    def __init__(
        self,
        primary: TextGenerator,
        secondary: TextGenerator,
        parser: Callable[[Any], AnalysisRecord] = parse_response,
        local_fallback: Callable[[ContentKind, Mapping[str, Any]], AnalysisRecord] = analyze_locally,
    ):
        self.primary = primary
        self.secondary = secondary
        self.parser = parser
        self.local_fallback = local_fallback

    async def analyze(self, content_kind: ContentKind, content: Mapping[str, Any]) -> AnalysisRecord:
        """Analyze content, falling back tier by tier on availability failures.

        Raises:
            ModelRequestError: If a remote tier rejects the request outright
        """
        kind = ContentKind(content_kind)
        prompt = build_prompt(kind, content)

        for tier, source in ((self.primary, SOURCE_PRIMARY), (self.secondary, SOURCE_SECONDARY)):
            try:
                raw = await tier.generate(prompt)
            except ModelUnavailableError as e:
                logger.warning(
                    "Model tier unavailable, falling back",
                    tier=tier.name,
                    content_kind=kind.value,
                    error=str(e),
                )
                continue

            record = self.parser(raw)
            record.source = source
            logger.info(
                "Model analysis complete",
                tier=tier.name,
                content_kind=kind.value,
                confidence=record.confidence,
                corrections_count=len(record.corrections),
            )
            return record

        logger.warning("All remote model tiers unavailable, using local analysis", content_kind=kind.value)
        return self.local_fallback(kind, content)

    async def handle(self, request: AnalysisRequest) -> AnalysisRecord:
        """Queue handler entry point."""
        return await self.analyze(request.content_kind, request.content)


def create_model_client(config: Optional[ProcessorSettings] = None) -> TieredModelClient:
    """Build the default tier chain from settings."""
    return TieredModelClient(
        primary=PrimaryModelClient(config),
        secondary=SecondaryModelClient(config),
    )

"""Job processors for the analysis pipeline."""

from .analyze import AnalyzeContentProcessor

__all__ = ["AnalyzeContentProcessor"]

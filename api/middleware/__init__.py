"""Middleware for the content analysis API."""

from .error_handler import setup_exception_handlers
from .logging import LoggingMiddleware, configure_logging

__all__ = ["setup_exception_handlers", "LoggingMiddleware", "configure_logging"]

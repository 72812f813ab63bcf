"""Main entry point for the analysis worker service."""

import logging
import sys

import structlog
from celery.signals import setup_logging

from processor.broker import celery_app
from processor.config import settings

logger = structlog.get_logger()


def configure_logging() -> None:
    """Configure stdlib logging and structlog for the worker."""
    # Configure stdlib logging level (required for structlog.stdlib.filter_by_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if settings.LOG_FORMAT == "json" else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    # Keeps Celery from installing its own root handlers
    configure_logging()


def main() -> None:
    """Start a Celery worker consuming analysis jobs.

    Concurrency is fixed at one so model requests stay single-flight.
    """
    if not settings.BROKER_URL:
        logger.error("BROKER_URL is not set; jobs are processed inline by the API")
        sys.exit(1)

    logger.info("Starting analysis worker", queue=settings.BROKER_QUEUE_NAME)
    celery_app.worker_main(
        [
            "worker",
            "--concurrency=1",
            f"--queues={settings.BROKER_QUEUE_NAME}",
            f"--loglevel={settings.LOG_LEVEL.upper()}",
        ]
    )


if __name__ == "__main__":
    main()

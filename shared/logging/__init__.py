"""
Logging Module
==============

Structured logging using structlog with JSON output for production
and colored console output for development.

Usage:
    from shared.logging import get_logger, log_context, setup_logging

    # Setup at application start
    setup_logging()

    logger = get_logger(__name__)
    logger.info("rule_published", rule_id="rule-1", source="releaser")

    # Scope keys to a batch
    with log_context(batch="staleness"):
        logger.warning("evidence_unavailable", evidence_id="ev-1")
"""

from shared.logging.logger import get_logger, log_context, setup_logging


__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
]

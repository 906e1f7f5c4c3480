"""
Regulatory Truth Shared Library
===============================

Common configuration, logging and database plumbing shared by the
regulatory truth services.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - database: Async PostgreSQL client (SQLAlchemy + asyncpg)
    - models: Shared API response models

Version: 0.1.0
"""

__version__ = "0.1.0"

from shared.config import settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]

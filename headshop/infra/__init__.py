"""
Infrastructure package - unified entry points for core services.

This package provides standardized, centralized access to:
- Database (db)
- Logging (configure_logging, init_logging, get_logger)
"""

from headshop.infra.db import db
from headshop.infra.log import configure_logging, init_logging, get_logger

__all__ = [
    "db",
    "configure_logging",
    "init_logging",
    "get_logger",
]

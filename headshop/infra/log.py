"""
Unified logging infrastructure module.

Single entry point for structured logging across services, routes and
middleware.
"""

from headshop.services.structured_logging import (
    configure_logging,
    init_logging,
    get_logger,
)

__all__ = ["configure_logging", "init_logging", "get_logger"]

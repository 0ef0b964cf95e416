"""
Unified database infrastructure module.

Repositories and services import the SQLAlchemy instance from here so the
storage backend has a single entry point.
"""

from headshop.database import db

__all__ = ["db"]

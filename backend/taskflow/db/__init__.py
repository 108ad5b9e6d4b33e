"""Database package."""

from taskflow.db.base import Base
from taskflow.db.session import get_db_session

__all__ = ["Base", "get_db_session"]

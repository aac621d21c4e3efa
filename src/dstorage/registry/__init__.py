"""Local reference registry (Access Directory) backed by SQLite."""

from .connection import DatabaseConnection
from .directory import SqliteAccessDirectory

__all__ = ["DatabaseConnection", "SqliteAccessDirectory"]

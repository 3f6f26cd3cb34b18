"""SQLite storage: connection management and the bundled schema."""

from .sqlite import Database, run_migrations

__all__ = ["Database", "run_migrations"]

"""Storage layer for PostgreSQL connectivity."""

from smartagri.storage.database import Database

__all__ = ["Database"]

"""
Database Package

ORM models, repositories and connection management for webhooks,
delivery tasks and dead-letter entries.
"""

from issuehooks.database.connection import Base, Database

__all__ = ["Base", "Database"]

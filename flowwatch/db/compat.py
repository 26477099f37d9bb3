"""
Database compatibility layer.

Provides types that work on both SQLite (dev/tests) and PostgreSQL (prod):
- JSONType: JSONB on PostgreSQL, JSON on SQLite
- UTCDateTime: naive UTC in the column, timezone-aware UTC in Python
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, TypeDecorator
from sqlalchemy.dialects import postgresql


class JSONType(TypeDecorator):
    """Platform-independent JSON type.

    Uses JSONB on PostgreSQL, JSON on SQLite.
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.JSONB)
        return dialect.type_descriptor(JSON)


class UTCDateTime(TypeDecorator):
    """Timestamp stored as naive UTC, returned as aware UTC.

    SQLite has no timezone support, so range comparisons (dedup window,
    cache age) only stay correct if every stored value is in one zone.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

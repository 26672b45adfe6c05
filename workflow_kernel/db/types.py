"""
Module: workflow_kernel.db.types
Responsibility: Custom column types shared by every ORM model.
Architecture position: Kernel > DB.  No imports from the rest of the kernel.

SQLite stores DateTime values as naive strings and drops tzinfo on the way
back, which would make loaded deadlines incomparable with the injected
Clock.  UTCDateTime normalises every bound value to UTC and re-attaches
UTC on load, so both PostgreSQL and SQLite behave the same.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime (naive input is taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp.

    Guarantees:
        - process_bind_param: aware -> UTC; naive values are taken as UTC.
        - process_result_value: always returns an aware UTC datetime.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = ensure_utc(value)
        if dialect.name == "sqlite":
            # Stored naive so lexical comparison in SQL stays chronological
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        return ensure_utc(value)

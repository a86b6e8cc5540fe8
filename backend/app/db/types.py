"""
Column helpers shared by the TMS models.
"""

import enum
from datetime import datetime, timezone
from typing import Optional, Type

from sqlalchemy import Enum


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime read back from the store to aware UTC.

    SQLite hands back naive values for timezone-aware columns; PostgreSQL
    returns aware ones. Naive values are taken to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def enum_column_type(enum_cls: Type[enum.Enum]) -> Enum:
    """Store an enum by its lowercase value rather than its member name."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        validate_strings=True,
        length=32,
    )

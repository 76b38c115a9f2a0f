"""
Module: provenance_kernel.db.base
Responsibility: Declarative base and shared column types for the ORM models
    backing the SQL causal store.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, store/, services/, selectors/.

Invariants enforced:
    - String primary keys: producers mint their own ids; every model
      inherits a String(128) ``id`` primary key.  Ids are unique across
      all five tables (enforced by the recorder, not the database).
    - UTC timestamps: UTCDateTime normalizes every stored datetime to UTC
      and always returns timezone-aware values, including on SQLite which
      has no native timezone support.
"""

from datetime import datetime, timezone
from typing import ClassVar

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC.

    Guarantees:
        - process_bind_param: aware datetimes are converted to UTC; naive
          datetimes are taken to be UTC already.
        - process_result_value: always returns a UTC-aware datetime.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is a producer-supplied string.
        - datetime maps to UTCDateTime.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
    }

    id: Mapped[str] = mapped_column(String(128), primary_key=True)

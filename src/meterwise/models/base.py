"""SQLAlchemy declarative base with common columns."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all meterwise ORM models."""

    pass


class TimestampMixin:
    """Mixin that adds a ``created_at`` column with UTC default."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class UUIDPrimaryKeyMixin(TimestampMixin):
    """Mixin that adds a UUID primary key and ``created_at`` timestamp."""

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

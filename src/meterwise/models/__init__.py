"""SQLAlchemy ORM models for meterwise."""

from meterwise.models.base import Base
from meterwise.models.subscriber import Subscriber
from meterwise.models.usage_event import UsageEvent

__all__ = [
    "Base",
    "Subscriber",
    "UsageEvent",
]

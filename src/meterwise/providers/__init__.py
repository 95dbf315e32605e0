"""External metering / invoicing providers."""

from meterwise.providers.base import MeteringProvider

__all__ = ["MeteringProvider"]

"""Exception hierarchy for metering and reconciliation failures.

Resolution problems (provider period unavailable) are recovered by the
period resolver.  Configuration problems skip one subscriber for one run.
Dispatch and commit problems fail one subscriber for one run.  None of
them abort the batch.
"""

from __future__ import annotations


class MeteringError(Exception):
    """Base class for all meterwise errors."""


class ProviderError(MeteringError):
    """The metering provider rejected a call or could not be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderUnavailable(ProviderError):
    """The provider's subscription record could not be read."""


class ConfigurationError(MeteringError):
    """A subscriber cannot be billed until its setup is fixed."""


class MissingLinkage(ConfigurationError):
    """No external customer / subscription linkage for the subscriber."""


class MeteredDimensionMissing(ConfigurationError):
    """No metered line item or unknown metered dimension at the provider."""


class DispatchError(MeteringError):
    """At least one usage record in a subscriber batch was not accepted."""

    def __init__(self, batch_size: int, accepted: int, failures: list[BaseException]) -> None:
        self.batch_size = batch_size
        self.accepted = accepted
        self.failures = failures
        first = failures[0] if failures else None
        super().__init__(
            f"{len(failures)} of {batch_size} usage records rejected"
            + (f" (first: {first})" if first is not None else "")
        )


class CommitError(MeteringError):
    """Dispatched usage could not be marked billed in the ledger."""

    def __init__(self, message: str, *, event_ids: list[int]) -> None:
        super().__init__(message)
        self.event_ids = event_ids

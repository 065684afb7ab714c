"""Exception hierarchy for the routing and reminder core.

Callers can catch :class:`TumainiError` for anything raised deliberately
by the core.  An empty routing result is *not* an error: when no provider
is eligible the engine returns an empty list and the caller decides how
to escalate.
"""

from __future__ import annotations


class TumainiError(Exception):
    """Base class for all errors raised by the core."""


class InvalidInputError(TumainiError, ValueError):
    """Malformed input: an incident with no service tags, an unparsable
    appointment time, a negative reminder offset.  Retrying with the same
    input will fail the same way."""


class NotFoundError(TumainiError, LookupError):
    """An assignment or provider id that the store does not know."""


class ConcurrencyConflictError(TumainiError):
    """The operation lost a race or contradicts an earlier terminal
    transition (double accept, accept after decline).  The first
    operation's effect stands."""


class ProviderAtCapacityError(ConcurrencyConflictError):
    """Accepting would push the provider past ``max_case_load``."""


class StoreUnavailableError(TumainiError):
    """The key-value store failed.  Propagated to the caller, which owns
    the retry policy."""


class DeliveryError(TumainiError):
    """A notification sink could not deliver a message."""


class RemoteApiError(TumainiError):
    """The remote case API rejected a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteServerError(RemoteApiError):
    """5xx from the remote case API.  Worth retrying."""

"""Error taxonomy for the dispatch integration layer.

Only the credential cache and the LLM client raise these to their callers.
The account cache and the reservation lookup convert every failure into a
degraded-but-valid result.
"""

from __future__ import annotations


class CallTakerError(Exception):
    """Base class for every error raised by the call-taker backend."""


class PreconditionError(CallTakerError):
    """A required input (tenant, principal, secret, phone...) is missing."""


class TransportError(CallTakerError):
    """The request never completed (DNS, connect, TLS, timeout)."""


class UpstreamStatusError(CallTakerError):
    """The upstream answered with a non-success HTTP status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        reason: str = "",
        body: str = "",
    ):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(message)


class ExtractionError(CallTakerError):
    """A successful response did not have the shape we expected."""


class AuthError(CallTakerError):
    """Raised when a bearer token cannot be acquired.

    ``reason`` is safe to log and to hand to the model as a note: it never
    contains the shared secret or an issued token.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ConfigurationError(CallTakerError):
    """Local configuration (API key, directory files) is missing or invalid."""

"""
Exception hierarchy for Polygon REST retrieval errors.

Every error raised by this package derives from RetrievalError and carries
an ErrorKind tag. The four kinds are closed and exhaustive:

- CONFIG: missing or invalid configuration; surfaced immediately
- TRANSIENT: network failure, timeout or retryable HTTP status; retried
- PERMANENT: anything retrying cannot fix; surfaced immediately
- EMPTY_RESULT: the vendor has no data for the query (HTTP 404 or an
  empty result set); never retried and never a PERMANENT error

Callers that care about "no data" must catch EmptyResultError explicitly.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Classification shared by all retrieval errors."""

    CONFIG = "config"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    EMPTY_RESULT = "empty_result"


class RetrievalError(Exception):
    """
    Base exception for all retrieval errors.

    Attributes:
        kind: ErrorKind of this error.
        cause: Underlying exception, if any.
        context: Structured details (endpoint, status, offending value...).
    """

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        **context: Any
    ):
        self.message = message
        self.cause = cause
        self.context: Dict[str, Any] = context

        full_message = message
        if context:
            details = ", ".join(f"{k}={v}" for k, v in context.items())
            full_message += f" ({details})"
        if cause is not None:
            full_message += f"\n  Reason: {type(cause).__name__}: {cause}"

        super().__init__(full_message)

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


class ConfigError(RetrievalError):
    """
    Raised when the client is misconfigured.

    Reasons may include:
    - Missing API key
    - Invalid rate limit or timeout values
    - Unreadable configuration file
    """

    kind = ErrorKind.CONFIG


class TransientError(RetrievalError):
    """
    Raised for failures that may succeed if retried later.

    Reasons may include:
    - Network timeout or connection reset
    - DNS resolution failure
    - HTTP 429 or 5xx from the vendor
    """

    kind = ErrorKind.TRANSIENT


class RateLimitError(TransientError):
    """Raised when the vendor answers HTTP 429."""


class ConnectionError(TransientError):
    """Raised when the transport fails before a response arrives."""


class PermanentError(RetrievalError):
    """Raised for failures that retrying will not fix."""

    kind = ErrorKind.PERMANENT


class HTTPStatusError(PermanentError):
    """Raised for a non-retryable, non-200 HTTP status."""

    def __init__(self, status: int, url: Optional[str] = None):
        self.status = status
        self.url = url
        super().__init__(f"server returned {status}", status=status, url=url)


class DecodeError(PermanentError):
    """Raised when a response body cannot be decompressed or parsed as JSON."""


class ResponseTooLargeError(PermanentError):
    """
    Raised when a response body exceeds the configured size cap.

    Bodies are never silently truncated; hitting the cap is always an error.
    """


class CodecError(PermanentError):
    """Raised when a condition code, correction code or trade ID is invalid."""


class TimestampRangeError(PermanentError):
    """
    Raised when a record's canonical timestamp falls outside the requested window.

    Attributes:
        dump_path: Where the rejected payload was written, if the dump succeeded.
    """

    def __init__(self, message: str, dump_path: Optional[str] = None, **context: Any):
        self.dump_path = dump_path
        super().__init__(message, **context)


class PaginationError(PermanentError):
    """
    Raised when pagination metadata is malformed.

    Reasons may include:
    - next_url present without a cursor parameter
    - Timestamp pagination that stops making progress
    """


class EmptyResultError(RetrievalError):
    """
    Raised when the vendor has no data for the query.

    This is a distinguished signal rather than a failure: HTTP 404 and an
    empty result set both mean "no data exists", which callers must be able
    to tell apart from an empty collection produced by a bug.
    """

    kind = ErrorKind.EMPTY_RESULT

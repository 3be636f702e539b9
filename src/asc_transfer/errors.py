import json
import logging


logger = logging.getLogger(__name__)

_MAX_ERROR_BODY = 200


class TransferError(Exception):
    """Base class for every error raised by asc_transfer."""


class ConfigurationError(TransferError, ValueError):
    """Invalid input detected before any I/O took place. Never retried."""


class RetryableError(TransferError):
    """A transient failure that is safe to retry.

    ``retry_after`` is a server supplied wait in seconds; 0 means none.
    """

    def __init__(self, message, retry_after=0.0):
        super().__init__(message)
        self.retry_after = retry_after


class RetryLimitExceeded(TransferError):
    """All retry attempts failed with retryable errors."""

    def __init__(self, attempts, last_error):
        super().__init__(
            f"retry limit exceeded after {attempts} attempts: {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


class OperationCancelled(TransferError):
    """The operation was cancelled by its caller or by a failing sibling."""


class UploadError(TransferError):
    """One chunk of a multi-chunk upload failed permanently."""

    def __init__(self, index, cause):
        super().__init__(f"upload operation {index}: {cause}")
        self.index = index
        self.cause = cause


class StorageUploadError(TransferError):
    """A direct-to-storage object upload was rejected."""


class ChecksumError(TransferError):
    pass


class ChecksumMismatch(ChecksumError):
    def __init__(self, kind, expected, actual):
        super().__init__(
            f"{kind} checksum mismatch (expected {expected}, got {actual})"
        )
        self.kind = kind
        self.expected = expected
        self.actual = actual


class ChecksumMissing(ChecksumError, ConfigurationError):
    """An expected checksum has no hash or an unknown algorithm."""


class PaginationError(TransferError):
    """Aggregating a paged listing failed at ``page`` (1-based)."""

    def __init__(self, message, page=None):
        if page is not None:
            message = f"page {page}: {message}"
        super().__init__(message)
        self.page = page


class RepeatedPaginationURL(PaginationError):
    pass


class PageShapeMismatch(PaginationError):
    pass


class APIError(TransferError):
    """A parsed JSON:API error response."""

    def __init__(self, code="", title="", detail="", status_code=0):
        self.code = sanitize_terminal(code).strip()
        self.title = sanitize_terminal(title).strip()
        self.detail = sanitize_terminal(detail).strip()
        self.status_code = status_code
        super().__init__(self._message())

    def _message(self):
        if self.title and self.detail:
            return f"{self.title}: {self.detail}"
        return self.title or self.detail or self.code or "API error"

    @classmethod
    def from_body(cls, body, status_code=0):
        """Build an error from a response body.

        Bodies that are not JSON:API error documents produce a generic
        error carrying a sanitized excerpt of the body.
        """
        try:
            payload = json.loads(body or b"")
            first = payload["errors"][0]
            fields = {
                key: str(first.get(key) or "") for key in ("code", "title", "detail")
            }
        except (AttributeError, ValueError, KeyError, IndexError, TypeError):
            logger.debug("Unparseable error body for status %s", status_code)
            return cls(
                code="UNKNOWN",
                title="unknown error",
                detail=sanitize_error_body(body),
                status_code=status_code,
            )
        return cls(status_code=status_code, **fields)


def sanitize_error_body(body):
    """Truncate a response body and strip control characters from it."""
    if isinstance(body, bytes):
        body = body[:_MAX_ERROR_BODY].decode("utf-8", errors="replace")
    else:
        body = (body or "")[:_MAX_ERROR_BODY]
    return "".join(ch for ch in body if ch >= " " or ch in "\n\r\t")


def sanitize_terminal(value):
    if not value:
        return ""
    return "".join(ch for ch in value if ch >= " " and ch != "\x7f")

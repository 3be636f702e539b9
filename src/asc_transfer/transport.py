from asc_transfer.errors import APIError
from asc_transfer.errors import RetryableError
from asc_transfer.interfaces import ITransport
from datetime import datetime
from datetime import timezone
from urllib.parse import parse_qsl
from urllib.parse import urlencode
from urllib.parse import urlsplit
from urllib.parse import urlunsplit
from zope.interface import implementer

import email.utils
import httpx
import logging


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
RETRYABLE_STATUSES = frozenset({429, 503})

_REDACTED = "[REDACTED]"

_SIGNED_QUERY_KEYS = frozenset(
    {
        "x-amz-signature",
        "x-amz-credential",
        "x-amz-algorithm",
        "x-amz-signedheaders",
        "signature",
        "key-pair-id",
        "policy",
        "sig",
    }
)

_SENSITIVE_QUERY_KEYS = _SIGNED_QUERY_KEYS | {
    "x-amz-security-token",
    "token",
    "access_token",
    "id_token",
    "refresh_token",
}


@implementer(ITransport)
class HTTPTransport:
    """httpx based transport.

    Connection failures and timeouts surface as ``RetryableError`` so that
    each attempt can be retried on its own; HTTP statuses are left for
    ``check_response`` to classify.
    """

    def __init__(self, client=None, timeout=DEFAULT_TIMEOUT):
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def request(self, method, url, content=None, headers=None, timeout=None):
        kwargs = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            return self._client.request(
                method, url, content=content, headers=headers, **kwargs
            )
        except httpx.TimeoutException as e:
            logger.debug("%s %s timed out: %s", method, sanitize_url_for_log(url), e)
            raise RetryableError(f"{method} request timed out: {e}") from e
        except httpx.TransportError as e:
            logger.debug("%s %s failed: %s", method, sanitize_url_for_log(url), e)
            raise RetryableError(f"{method} request failed: {e}") from e

    def close(self):
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


def check_response(response):
    """Return ``response`` if it is 2xx, otherwise raise the matching error.

    429 and 503 raise ``RetryableError`` carrying the Retry-After hint;
    every other status raises a parsed ``APIError``.
    """
    status = response.status_code
    if 200 <= status < 300:
        return response
    if status in RETRYABLE_STATUSES:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        raise RetryableError(
            _retryable_message(status, retry_after), retry_after=retry_after
        )
    raise APIError.from_body(response.content, status)


def _retryable_message(status, retry_after):
    if status == 429:
        message = f"rate limited (status {status})"
    else:
        message = f"service unavailable (status {status})"
    if retry_after > 0:
        message = f"{message} (retry after {retry_after:g}s)"
    return message


def parse_retry_after(value, now=None):
    """Parse a Retry-After header into seconds; 0.0 when absent or past.

    Accepts delta-seconds or an HTTP-date.
    """
    value = (value or "").strip()
    if not value:
        return 0.0
    try:
        seconds = int(value)
    except ValueError:
        pass
    else:
        return float(seconds) if seconds > 0 else 0.0

    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return 0.0
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    if now is None:
        now = datetime.now(timezone.utc)
    delay = (when - now).total_seconds()
    return delay if delay > 0 else 0.0


def sanitize_url_for_log(url):
    """Redact credentials and signed query parameters from a URL."""
    if not url:
        return ""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    netloc = parts.netloc
    if "@" in netloc:
        netloc = f"{_REDACTED}@{netloc.rsplit('@', 1)[1]}"
    query = parts.query
    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        redact_all = any(
            key.lower() in _SIGNED_QUERY_KEYS and value.strip()
            for key, value in pairs
        )
        query = urlencode(
            [
                (key, _REDACTED)
                if redact_all or key.lower() in _SENSITIVE_QUERY_KEYS
                else (key, value)
                for key, value in pairs
            ]
        )
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))

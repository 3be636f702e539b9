from asc_transfer.cancel import run_cancellable
from asc_transfer.pagination import aggregate_pages
from asc_transfer.pagination import validate_next_url
from asc_transfer.retry import execute_with_retry
from asc_transfer.signing import mint_bearer_token
from asc_transfer.transport import check_response
from asc_transfer.transport import HTTPTransport
from asc_transfer.transport import sanitize_url_for_log

import logging


logger = logging.getLogger(__name__)

BASE_URL = "https://api.appstoreconnect.apple.com"

_RETRIED_METHODS = frozenset({"GET", "HEAD"})


class APIClient:
    """Authenticated JSON requests against the publishing API.

    A fresh bearer token is minted for every attempt. Only GET and HEAD
    are retried; other methods may not be idempotent. With a cancel token,
    a cancel returns at once even while a request is in flight.
    """

    def __init__(
        self,
        key_id,
        issuer_id,
        private_key,
        transport=None,
        base_url=BASE_URL,
        policy=None,
        timeout=None,
    ):
        self.key_id = key_id
        self.issuer_id = issuer_id
        self._private_key = private_key
        self._owns_transport = transport is None
        self._transport = transport if transport is not None else HTTPTransport()
        self.base_url = base_url.rstrip("/")
        if not self.base_url.startswith("https://"):
            logger.warning(
                "API base URL %s is not https; bearer tokens are sent in cleartext",
                sanitize_url_for_log(self.base_url),
            )
        self.policy = policy
        self._timeout = timeout

    def _url(self, path):
        if path.startswith(("http://", "https://")):
            return path
        return self.base_url + path

    def request(self, method, path, cancel=None):
        method = method.upper()
        url = self._url(path)

        def send():
            token = mint_bearer_token(self.key_id, self.issuer_id, self._private_key)
            logger.debug("%s %s", method, sanitize_url_for_log(url))
            response = self._transport.request(
                method,
                url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
                timeout=self._timeout,
            )
            check_response(response)
            if not response.content:
                return None
            return response.json()

        if cancel is None:
            attempt = send
        else:

            def attempt():
                return run_cancellable(send, cancel, name="api-request")

        if method in _RETRIED_METHODS:
            return execute_with_retry(attempt, self.policy, cancel=cancel)
        return attempt()

    def get(self, path, cancel=None):
        return self.request("GET", path, cancel=cancel)

    def get_page(self, path, response_cls, cancel=None):
        return response_cls.from_dict(self.get(path, cancel=cancel))

    def paginate_all(self, path, response_cls, cancel=None):
        """Fetch ``path`` and every following page into one response."""
        first_page = self.get_page(path, response_cls, cancel=cancel)

        def fetch_next(link):
            validate_next_url(link, self.base_url)
            return self.get_page(link, response_cls, cancel=cancel)

        return aggregate_pages(first_page, fetch_next, cancel=cancel)

    def close(self):
        if self._owns_transport:
            self._transport.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
